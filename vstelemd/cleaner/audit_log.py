"""
Audit trail for removal operations.

Every cleaned, blocked, failed or cancelled extension gets one JSON line in a
daily log file and a detailed report under reports/.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import ExtensionCleanResult
    from .policy import RemovalPolicy

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class RemovalAuditLogger:
    """Handles logging and reporting for removal operations."""

    def __init__(self, logs_dir: str = "logs/removals"):
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_removal_operation(self, result: "ExtensionCleanResult",
                              policy: Optional["RemovalPolicy"] = None) -> Dict[str, Any]:
        """Log one extension's outcome and store it in the audit trail."""
        log_entry = {
            "operation_id": result.operation_id,
            "timestamp": datetime.now().isoformat(),
            "extension_id": result.extension_id,
            "storage_path": result.storage_path,
            "storage_type": result.storage_type,
            "status": result.status,
            "state": result.state.value,
            "dry_run": result.dry_run,
            "items_removed": result.items_removed,
            "items_skipped": result.items_skipped,
            "total_size_removed": result.total_size_removed,
            "total_size_removed_mb": round(result.total_size_removed / MB, 2),
            "telemetry_size_removed": result.telemetry_size_removed,
            "backup_paths": list(result.backup_paths),
            "duration_seconds": result.cleanup_duration,
            "duration_formatted": self._format_duration(result.cleanup_duration),
            "errors": list(result.errors),
            "warnings": list(result.warnings),
            "policy_applied": policy.to_dict() if policy is not None else None,
        }

        if result.status == 'success':
            logger.info(f"Removal completed: {result.extension_id} - "
                        f"{result.items_removed} items, {log_entry['total_size_removed_mb']} MB "
                        f"in {log_entry['duration_formatted']}"
                        f"{' (dry run)' if result.dry_run else ''}")
        elif result.status == 'failed':
            logger.error(f"Removal failed: {result.extension_id} - {'; '.join(result.errors)}")
        else:
            logger.warning(f"Removal {result.status}: {result.extension_id}")

        self._store_operation_log(log_entry)
        self._create_operation_report(result, log_entry)
        return log_entry

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        else:
            return f"{duration_seconds / 3600:.1f}h"

    def _store_operation_log(self, log_entry: Dict[str, Any]):
        """Append the entry to today's JSONL file."""
        try:
            log_date = datetime.now().strftime("%Y-%m-%d")
            log_file = self.logs_dir / f"removal_operations_{log_date}.jsonl"
            with open(log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(log_entry, default=str) + '\n')
        except Exception as e:
            logger.error(f"Failed to store operation log: {e}")

    def _create_operation_report(self, result: "ExtensionCleanResult", log_entry: Dict[str, Any]):
        try:
            reports_dir = self.logs_dir / "reports"
            reports_dir.mkdir(parents=True, exist_ok=True)
            report_file = reports_dir / f"removal_report_{result.operation_id}.json"

            report = {
                "operation_summary": {
                    "operation_id": result.operation_id,
                    "extension_id": result.extension_id,
                    "status": result.status,
                    "state_history": [state.value for state in result.history],
                    "dry_run": result.dry_run,
                    "duration": log_entry["duration_formatted"],
                },
                "removal_metrics": {
                    "items_removed": result.items_removed,
                    "items_skipped": result.items_skipped,
                    "total_size_removed": result.total_size_removed,
                    "telemetry_size_removed": result.telemetry_size_removed,
                    "cleaned_storage_items": len(result.cleaned_storage_items),
                    "cleaned_cache_files": len(result.cleaned_cache_files),
                    "cleaned_temp_files": len(result.cleaned_temp_files),
                },
                "safety": result.safety_checks.to_dict() if result.safety_checks else None,
                "backups": list(result.backup_paths),
                "removed_items": [item.to_dict() for item in result.all_cleaned_items()],
                "policy": log_entry["policy_applied"],
                "error_details": {
                    "errors": list(result.errors),
                    "warnings": list(result.warnings),
                    "has_error": result.status == 'failed',
                },
            }

            with open(report_file, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, default=str)
            logger.debug(f"Removal report created: {report_file}")

        except Exception as e:
            logger.error(f"Failed to create operation report: {e}")

    def create_removal_summary_report(self, results: List["ExtensionCleanResult"]) -> Dict[str, Any]:
        """Summarize a batch of removals and save it under reports/."""
        try:
            total_removed = sum(r.total_size_removed for r in results)
            total_duration = sum(r.cleanup_duration for r in results)
            by_status: Dict[str, int] = {}
            for r in results:
                by_status[r.status] = by_status.get(r.status, 0) + 1

            summary_report = {
                "report_metadata": {
                    "generated_at": datetime.now().isoformat(),
                    "report_type": "removal_summary",
                    "total_operations": len(results),
                },
                "overall_summary": {
                    "items_removed": sum(r.items_removed for r in results),
                    "total_size_removed": total_removed,
                    "total_size_removed_mb": round(total_removed / MB, 2),
                    "telemetry_size_removed": sum(r.telemetry_size_removed for r in results),
                    "total_duration_formatted": self._format_duration(total_duration),
                    "by_status": by_status,
                    "success_rate": by_status.get('success', 0) / len(results) * 100 if results else 0,
                },
                "operation_details": [
                    {
                        "operation_id": r.operation_id,
                        "extension_id": r.extension_id,
                        "status": r.status,
                        "items_removed": r.items_removed,
                        "total_size_removed": r.total_size_removed,
                        "errors": list(r.errors),
                    }
                    for r in results
                ],
            }
            self._save_summary_report(summary_report)
            return summary_report

        except Exception as e:
            logger.error(f"Failed to create removal summary report: {e}")
            return {"error": str(e)}

    def _save_summary_report(self, report: Dict[str, Any]):
        try:
            reports_dir = self.logs_dir / "reports"
            reports_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            report_file = reports_dir / f"removal_summary_{timestamp}.json"
            with open(report_file, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, default=str)
            logger.info(f"Removal summary report saved: {report_file}")
        except Exception as e:
            logger.error(f"Failed to save summary report: {e}")
