"""
Constant detection tables.

Every table is a tuple so the registry built from them cannot be mutated
after start-up, and so iteration order (which decides "first match" rules)
is deterministic.
"""

from .risk import TelemetryRisk

CRITICAL = TelemetryRisk.CRITICAL
HIGH = TelemetryRisk.HIGH
MEDIUM = TelemetryRisk.MEDIUM
LOW = TelemetryRisk.LOW


# (name, risk, category, regex, description)
CODE_PATTERNS = (
    ("telemetry_reporter_new", CRITICAL, "Direct Telemetry",
     r"new\s+TelemetryReporter\s*\(",
     "Creates a new TelemetryReporter instance for data collection"),
    ("telemetry_reporter_import", CRITICAL, "Direct Telemetry",
     r"(?:import|require)\s*.*(?:@vscode/extension-telemetry|vscode-extension-telemetry)",
     "Imports VS Code telemetry library"),
    ("telemetry_send_event", CRITICAL, "Direct Telemetry",
     r"\.sendTelemetryEvent\s*\(",
     "Actively sends telemetry events"),
    ("telemetry_send_exception", CRITICAL, "Direct Telemetry",
     r"\.sendTelemetryException\s*\(",
     "Sends exception/error telemetry"),
    ("vscode_machine_id", HIGH, "Machine Identification",
     r"vscode\.env\.machineId",
     "Accesses VS Code's unique machine identifier"),
    ("vscode_session_id", HIGH, "Session Identification",
     r"vscode\.env\.sessionId",
     "Accesses VS Code's session identifier"),
    ("vscode_remote_name", HIGH, "Environment Identification",
     r"vscode\.env\.remoteName",
     "Identifies remote development environment"),
    ("os_hostname", HIGH, "System Identification",
     r"os\.hostname\s*\(\)",
     "Gets system hostname for identification"),
    ("process_env_user", HIGH, "User Identification",
     r"process\.env\.(?:USER|USERNAME|COMPUTERNAME)",
     "Accesses system user/computer name"),
    ("fetch_request", MEDIUM, "Network Communication",
     r"fetch\s*\(",
     "Makes HTTP requests that could send data"),
    ("axios_request", MEDIUM, "Network Communication",
     r"axios\s*\.(?:get|post|put|delete|request)",
     "Makes HTTP requests using Axios library"),
    ("http_request", MEDIUM, "Network Communication",
     r"https?\.request\s*\(",
     "Makes HTTP requests using Node.js http module"),
    ("xmlhttprequest", MEDIUM, "Network Communication",
     r"new\s+XMLHttpRequest\s*\(\)",
     "Creates XMLHttpRequest for web requests"),
    ("navigator_useragent", MEDIUM, "Browser Fingerprinting",
     r"navigator\.userAgent",
     "Accesses browser user agent string"),
    ("appinsights_import", HIGH, "Analytics Service",
     r"(?:import|require)\s*.*applicationinsights",
     "Imports Microsoft Application Insights"),
    ("appinsights_track", HIGH, "Analytics Service",
     r"\.track(?:Event|Exception|Metric|Request|Dependency)\s*\(",
     "Tracks events using Application Insights"),
    ("analytics_reference", LOW, "Analytics Reference",
     r"(?:analytics|tracking|metrics|usage)\s*[:=]",
     "References to analytics or tracking functionality"),
    ("performance_now", LOW, "Performance Tracking",
     r"performance\.now\s*\(\)",
     "Measures performance timing"),
    ("console_log_data", LOW, "Data Logging",
     r"console\.(?:log|info|warn|error)\s*\([^)]*(?:user|data|info|event)",
     "Logs potentially sensitive data to console"),
    ("localstorage_access", MEDIUM, "Local Storage",
     r"localStorage\.(?:getItem|setItem|removeItem)",
     "Accesses browser local storage"),
    ("sessionstorage_access", MEDIUM, "Session Storage",
     r"sessionStorage\.(?:getItem|setItem|removeItem)",
     "Accesses browser session storage"),
    ("document_cookie", MEDIUM, "Cookie Access",
     r"document\.cookie",
     "Accesses browser cookies"),
    ("vscode_workspace_config", LOW, "Configuration Access",
     r"vscode\.workspace\.getConfiguration\s*\([^)]*(?:telemetry|analytics|tracking)",
     "Accesses telemetry-related configuration"),
    ("extension_context_global", MEDIUM, "Extension Storage",
     r"context\.globalState\.(?:get|update)",
     "Accesses extension global state storage"),
    ("extension_context_workspace", LOW, "Extension Storage",
     r"context\.workspaceState\.(?:get|update)",
     "Accesses extension workspace state storage"),
)

# Substrings matched case-insensitively against storage file names, paths and keys.
STORAGE_KEY_PATTERNS = (
    ("telemetryData", CRITICAL),
    ("analyticsData", CRITICAL),
    ("trackingData", CRITICAL),
    ("machineId", CRITICAL),
    ("deviceId", CRITICAL),
    ("sessionId", HIGH),
    ("userId", HIGH),
    ("installId", HIGH),
    ("usageStats", HIGH),
    ("userMetrics", HIGH),
    ("apiKeys", HIGH),
    ("authTokens", HIGH),
    ("performanceMetrics", MEDIUM),
    ("featureUsage", MEDIUM),
    ("commandUsage", MEDIUM),
    ("crashReports", MEDIUM),
    ("errorLogs", MEDIUM),
    ("diagnosticData", MEDIUM),
    ("searchHistory", MEDIUM),
    ("commandHistory", MEDIUM),
    ("navigationHistory", MEDIUM),
    ("experimentData", MEDIUM),
    ("surveyResponses", MEDIUM),
    ("serverEndpoints", MEDIUM),
    ("networkLogs", MEDIUM),
    ("activationCount", LOW),
    ("debugInfo", LOW),
    ("recentFiles", LOW),
    ("preferences", LOW),
    ("feedbackData", LOW),
    ("betaFeatures", LOW),
)

CACHE_PATTERNS = (
    ("telemetry", HIGH),
    ("analytics", HIGH),
    ("tracking", HIGH),
    ("auth", HIGH),
    ("token", HIGH),
    ("usage", MEDIUM),
    ("metrics", MEDIUM),
    ("http", MEDIUM),
    ("api", MEDIUM),
    ("request", MEDIUM),
    ("user", MEDIUM),
    ("session", MEDIUM),
    ("log", MEDIUM),
    ("response", LOW),
    ("cache", LOW),
    ("temp", LOW),
    ("tmp", LOW),
)

# (category, substring) checked in order against lower-cased file names.
FILE_CATEGORIES = (
    ("Telemetry", "telemetry"),
    ("Analytics", "analytics"),
    ("Cache", "cache"),
    ("Logging", "log"),
    ("Configuration", "config"),
)
DEFAULT_FILE_CATEGORY = "General"

KEY_CATEGORIES = (
    ("Telemetry", "telemetry"),
    ("Usage Tracking", "usage"),
    ("Performance", "performance"),
    ("Error Reporting", "error"),
)
DEFAULT_KEY_CATEGORY = "Data"

# Filesystem scanner: path regexes add PATH_PATTERN_WEIGHT each.
FILESYSTEM_PATH_PATTERNS = (
    r".*augment.*",
    r".*telemetry.*",
    r".*machine.*id.*",
    r".*device.*id.*",
)
FILESYSTEM_CONTENT_PATTERNS = (
    r"augment",
    r"augmentcode",
    r"augment\.code",
    r"telemetry\.machineId",
    r"telemetry\.devDeviceId",
    r"vscode-augment",
    r"augment-vscode",
)
EDITOR_PATH_MARKER = "Code"
EDITOR_STORAGE_MARKERS = ("globalStorage", "workspaceStorage", "machineid")
PATH_PATTERN_WEIGHT = 0.3
EDITOR_LOCATION_WEIGHT = 0.5
CONTENT_PATTERN_WEIGHT = 0.2
MIN_CONFIDENCE = 0.1
MAX_CONTENT_SCAN_BYTES = 10 * 1024 * 1024

# Config scanner
CONFIG_TELEMETRY_KEYS = (
    ("telemetry.telemetryLevel", HIGH),
    ("telemetry.enableTelemetry", HIGH),
    ("telemetry.enableCrashReporter", HIGH),
    ("telemetry.optInTelemetry", HIGH),
    ("applicationinsights.instrumentationkey", CRITICAL),
    ("applicationinsights.connectionstring", CRITICAL),
    ("extensions.autoCheckUpdates", MEDIUM),
    ("extensions.autoUpdate", MEDIUM),
    ("extensions.ignoreRecommendations", LOW),
    ("update.enableWindowsBackgroundUpdates", MEDIUM),
    ("update.showReleaseNotes", LOW),
    ("workbench.enableExperiments", MEDIUM),
    ("workbench.settings.enableNaturalLanguageSearch", MEDIUM),
    ("github.gitAuthentication", MEDIUM),
    ("remote.downloadExtensionsLocally", LOW),
    ("typescript.surveys.enabled", MEDIUM),
    ("typescript.updateImportsOnFileMove.enabled", LOW),
    ("python.analysis.autoImportCompletions", LOW),
    ("csharp.semanticHighlighting.enabled", LOW),
    ("java.configuration.checkProjectSettings", LOW),
    ("go.toolsManagement.autoUpdate", MEDIUM),
)

CONFIG_KEY_DESCRIPTIONS = (
    ("telemetry.telemetryLevel", "Controls the level of telemetry data sent to Microsoft"),
    ("telemetry.enableTelemetry", "Enables or disables telemetry data collection"),
    ("telemetry.enableCrashReporter", "Controls crash report submission"),
    ("applicationinsights.instrumentationkey", "Application Insights instrumentation key for telemetry"),
    ("extensions.autoCheckUpdates", "Automatically checks for extension updates"),
    ("workbench.enableExperiments", "Enables experimental features that may collect data"),
)

CONFIG_SETTING_PATTERNS = (
    r".*\.telemetry\..*",
    r".*\.analytics\..*",
    r".*\.tracking\..*",
    r".*\.usage\..*",
    r".*\.metrics\..*",
    r".*\.crash.*report.*",
    r".*\.error.*report.*",
    r".*\.feedback\..*",
    r".*\.survey\..*",
    r".*\.experiment.*",
    r".*\.autoUpdate.*",
    r".*\.checkUpdate.*",
    r".*\.sendUsage.*",
    r".*\.collectData.*",
)

CORE_SETTING_PREFIXES = (
    "editor", "workbench", "window", "files", "search", "debug",
    "extensions", "terminal", "scm", "problems", "breadcrumbs",
    "telemetry", "update", "security", "remote", "merge-conflict",
)

WORKSPACE_SEARCH_DIRS = ("Documents", "Projects", "Development", "Code", "Desktop")
WORKSPACE_SEARCH_DEPTH = 2
MAX_CONFIG_FILE_BYTES = 1024 * 1024

# Database scanner
DATABASE_KEY_PATTERNS = (
    ("telemetry", HIGH),
    ("analytics", HIGH),
    ("tracking", HIGH),
    ("usage", MEDIUM),
    ("metrics", MEDIUM),
    ("statistics", MEDIUM),
    ("performance", LOW),
    ("machineid", CRITICAL),
    ("deviceid", CRITICAL),
    ("sessionid", HIGH),
    ("userid", HIGH),
    ("installid", HIGH),
    ("hostname", HIGH),
    ("extension.telemetry", HIGH),
    ("extension.analytics", HIGH),
    ("extension.usage", MEDIUM),
    ("extension.performance", LOW),
    ("lastused", LOW),
    ("activationcount", LOW),
    ("commandhistory", MEDIUM),
    ("searchhistory", MEDIUM),
    ("recentfiles", LOW),
    ("crashreport", MEDIUM),
    ("errorlog", MEDIUM),
    ("diagnostic", MEDIUM),
    ("experiment", MEDIUM),
    ("feature.flag", LOW),
    ("survey", MEDIUM),
    ("feedback", LOW),
)

DATABASE_EXTENSION_PATTERNS = (
    ("extension.activation", MEDIUM),
    ("extension.deactivation", MEDIUM),
    ("extension.usage.count", MEDIUM),
    ("extension.command.usage", MEDIUM),
    ("extension.error.count", MEDIUM),
    ("globalStorage", MEDIUM),
    ("workspaceStorage", LOW),
    ("memento", LOW),
    ("extension.config", LOW),
    ("extension.settings", LOW),
    ("extension.preferences", LOW),
    ("extension.update.check", MEDIUM),
    ("extension.install.source", MEDIUM),
    ("extension.uninstall.reason", MEDIUM),
)

KEY_VALUE_TABLES = ("ItemTable", "StateTable")
MAX_GENERIC_ROWS = 1000
DATABASE_VALUE_LIMIT = 200
STORAGE_VALUE_LIMIT = 100
SENSITIVE_VALUE_MARKERS = ("password", "token", "secret", "key")
MASKED_VALUE = "[SENSITIVE DATA MASKED]"
TRUNCATED_SUFFIX = "... (truncated)"

# Cache and temp directory analysis
EXTENSION_PATH_HINTS = (
    ("cpptools", "ms-vscode.cpptools"),
    ("eslint", "dbaeumer.vscode-eslint"),
    ("typescript", "vscode.typescript-language-features"),
    ("python", "ms-python.python"),
    ("java", "redhat.java"),
    ("go", "golang.go"),
    ("docker", "ms-azuretools.vscode-docker"),
    ("git", "vscode.git"),
    ("markdown", "vscode.markdown-language-features"),
)
UNKNOWN_EXTENSION = "unknown"

EXTENSION_RELATED_MARKERS = (
    "vscode", "extension", "code-server", "ms-", "redhat", "golang",
    "python", "typescript", "eslint", "prettier", "docker", "git",
)

CACHE_TYPE_HINTS = (
    ("log", "logs"),
    ("temp", "temporary"),
    ("data", "data"),
    ("cache", "cache"),
)

# Correlation analysis: (name, display name, description, key substrings, risk)
CORRELATION_KEY_PATTERNS = (
    ("machine_identification", "Machine Identification",
     "Machine or device identification data shared between extensions",
     ("machineId", "machine_id", "deviceId", "device_id", "installId", "install_id",
      "sessionId", "session_id"),
     CRITICAL),
    ("user_identification", "User Identification",
     "User identification data shared between extensions",
     ("userId", "user_id", "username", "userEmail", "user_email", "accountId",
      "account_id", "profileId", "profile_id"),
     HIGH),
    ("telemetry_endpoints", "Telemetry Endpoints",
     "Telemetry or analytics endpoints shared between extensions",
     ("telemetryUrl", "telemetry_url", "analyticsUrl", "analytics_url", "trackingUrl",
      "tracking_url", "endpoint", "apiEndpoint"),
     HIGH),
    ("api_keys", "API Keys",
     "API keys or authentication tokens shared between extensions",
     ("apiKey", "api_key", "authKey", "auth_key", "token", "accessToken",
      "access_token", "secretKey", "secret_key"),
     HIGH),
    ("usage_statistics", "Usage Statistics",
     "Usage statistics data shared between extensions",
     ("usageCount", "usage_count", "activationCount", "activation_count",
      "commandCount", "command_count", "featureUsage", "feature_usage"),
     MEDIUM),
    ("performance_metrics", "Performance Metrics",
     "Performance metrics shared between extensions",
     ("performanceData", "performance_data", "metrics", "timing", "loadTime",
      "load_time", "responseTime", "response_time"),
     MEDIUM),
    ("error_tracking", "Error Tracking",
     "Error tracking data shared between extensions",
     ("errorCount", "error_count", "crashCount", "crash_count", "errorLog",
      "error_log", "exception", "stackTrace"),
     MEDIUM),
)

# (name, description, example substrings, risk)
SHARED_DATA_TYPES = (
    ("vscode_machine_id", "VS Code machine identifier",
     ("vscode.env.machineId", "machineId"), CRITICAL),
    ("vscode_session_id", "VS Code session identifier",
     ("vscode.env.sessionId", "sessionId"), HIGH),
    ("extension_host_id", "Extension host identifier",
     ("extensionHostId", "hostId"), HIGH),
    ("workspace_hash", "Workspace identifier hash",
     ("workspaceHash", "workspace_hash"), MEDIUM),
    ("user_preferences", "User preference data",
     ("preferences", "settings", "config"), LOW),
)

TRIVIAL_VALUES = ("true", "false", "null")
MIN_HASHABLE_LENGTH = 3
MAX_HASHABLE_LENGTH = 1000

# Retention analysis
POLICY_FILE_NAMES = ("retention.json", "cleanup.json", "policy.json", "config.json", "settings.json")
HOUR = 3600
DAY = 24 * HOUR
RETENTION_DEFAULTS = (
    ("telemetry", 7 * DAY),
    ("analytics", 30 * DAY),
    ("tracking", 7 * DAY),
    ("usage", 90 * DAY),
    ("metrics", 30 * DAY),
    ("performance", 14 * DAY),
    ("error", 30 * DAY),
    ("crash", 90 * DAY),
    ("diagnostic", 30 * DAY),
    ("cache", 7 * DAY),
    ("temp", 1 * DAY),
    ("log", 14 * DAY),
    ("preferences", 365 * DAY),
    ("settings", 365 * DAY),
    ("history", 90 * DAY),
    ("session", 1 * HOUR),
    ("auth", 24 * HOUR),
    ("token", 24 * HOUR),
)
DEFAULT_RETENTION_SECONDS = 30 * DAY
POLICY_TYPE_KEYWORDS = (
    ("session", "session"),
    ("daily", "daily"),
    ("weekly", "weekly"),
    ("monthly", "monthly"),
    ("permanent", "permanent"),
    ("never", "permanent"),
    ("cleanup", "custom"),
    ("retention", "custom"),
    ("expire", "custom"),
    ("ttl", "custom"),
)
AUTO_CLEANUP_FILE_MARKERS = ("cleanup", "clean", "temp", "tmp")

# Safety validation
CRITICAL_PATHS = (
    "settings.json", "keybindings.json", "tasks.json", "launch.json",
    "package.json", "extension.js", "main.js",
    "user-data", "profiles", "workspaces",
    "system32", "program files", "applications",
)
PROTECTED_PATTERNS = (
    "config", "settings", "preferences", "profile", "workspace", "project",
    "bookmark", "history", "auth", "token", "credential", "certificate",
    "manifest", "package", "main", "index",
)
# (name, description, rule type, pattern, action, severity)
SAFETY_RULES = (
    ("protect_user_settings", "Protect user settings and configuration files",
     "path_protection", "*settings*", "warn", "high"),
    ("protect_authentication", "Protect authentication and credential data",
     "content_protection", "*auth*|*token*|*credential*", "block", "critical"),
    ("protect_workspace_data", "Protect workspace and project data",
     "path_protection", "*workspace*|*project*", "warn", "medium"),
    ("protect_recent_data", "Protect recently modified data",
     "temporal_protection", "age < 24h", "warn", "medium"),
    ("protect_large_data", "Warn about removing large amounts of data",
     "size_protection", "size > 100MB", "warn", "medium"),
    ("protect_system_paths", "Block removal from system paths",
     "path_protection", "*system*|*program files*|*applications*", "block", "critical"),
)
SAFETY_RULE_SUGGESTIONS = (
    ("protect_user_settings", "Consider excluding user settings from removal"),
    ("protect_authentication", "Never remove authentication data without explicit user consent"),
    ("protect_workspace_data", "Verify workspace data should be removed"),
    ("protect_recent_data", "Consider preserving recently modified data"),
    ("protect_large_data", "Ensure adequate backup for large data removal"),
    ("protect_system_paths", "System paths should never be modified"),
)

# Preflight
EDITOR_PROCESS_NAMES = ("code", "code.exe", "code helper", "code - insiders")
ELECTRON_PROCESS_NAMES = ("electron", "electron.exe")

# Dependency checks: (extension id keyword, description of the data it shares)
SHARED_DATA_KEYWORDS = (
    ("telemetry", "Telemetry collection data"),
    ("analytics", "Analytics data"),
)
