"""
Audit Logging Service - append-only audit trail of administrative actions
"""

from datetime import date, datetime
from typing import Any, Dict, Optional
import json
import logging

from .actor import Actor
from .period_calendar import utcnow

log = logging.getLogger(__name__)


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class AuditService:
    """Structured audit log of lifecycle actions"""

    @staticmethod
    def log_action(
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        actor: Optional[Actor] = None,
        old_value: Optional[Dict] = None,
        new_value: Optional[Dict] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Log audit event (append-only)

        Actions: create, update, delete, calculate, approve, distribute, rollover, close
        Entity types: investor, transaction, financial_year, distribution
        """
        try:
            audit_entry = {
                "timestamp": utcnow().isoformat(),
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor": actor.id if actor else None,
                "system": actor.is_system if actor else False,
                "old_value": old_value,
                "new_value": new_value,
                "reason": reason,
            }
            log.info(f"AUDIT: {json.dumps(audit_entry, default=_json_default)}")
            return True
        except (TypeError, ValueError) as e:
            log.error(f"Error logging audit: {str(e)}")
            return False

    @staticmethod
    def log_year_action(
        action: str,
        year_id: int,
        actor: Optional[Actor] = None,
        change_details: Optional[Dict] = None,
        reason: Optional[str] = None,
    ) -> bool:
        """Log financial-year lifecycle actions"""
        return AuditService.log_action(
            action=action,
            entity_type="financial_year",
            entity_id=year_id,
            actor=actor,
            new_value=change_details,
            reason=reason,
        )

    @staticmethod
    def log_investor_action(
        action: str,
        investor_id: int,
        actor: Optional[Actor] = None,
        change_details: Optional[Dict] = None,
    ) -> bool:
        """Log investor-related actions"""
        return AuditService.log_action(
            action=action,
            entity_type="investor",
            entity_id=investor_id,
            actor=actor,
            new_value=change_details,
        )
