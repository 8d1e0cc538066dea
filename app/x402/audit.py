# app/x402/audit.py
"""
Audit logging for x402 transactions.

This module logs x402 payment events for:
- Dispute resolution
- Financial reconciliation (a settled charge whose response never reached
  the client can be found by request id and transaction hash)
- Debugging failures

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH, enabled via X402_AUDIT_ENABLED

Events logged:
- 402 returned (amount, network, payee)
- Payment received (payer, amount)
- Payment verified / settled (payer, transaction hash)
- Payment failed (saga status, detail)
- Gate rejected (gate error, status code)
- Access granted (path, transaction hash)
- Error (type, message)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    GATE_REJECTED = "gate_rejected"
    ACCESS_GRANTED = "access_granted"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer/agent address (if available)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


class AuditLog:
    """JSON-lines audit log writer. A disabled log accepts events and drops them."""

    def __init__(self, path: str, enabled: bool = True):
        self.path = Path(path)
        self.enabled = enabled

    @classmethod
    def disabled(cls) -> "AuditLog":
        return cls("/dev/null", enabled=False)

    def ensure_directory(self) -> bool:
        """
        Ensure the audit log directory exists.

        Returns:
            True if directory exists or was created, False on error
        """
        try:
            log_dir = self.path.parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created audit log directory: {log_dir}")
            return True
        except OSError as e:
            logger.error(f"Failed to create audit log directory: {e}")
            return False

    def log_event(
        self,
        event_type: AuditEventType,
        data: Dict[str, Any],
        client_ip: Optional[str] = None,
        wallet_address: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Log an audit event.

        Returns:
            The request_id used for this event, or None if disabled or on error
        """
        if not self.enabled:
            return None

        event = create_audit_event(
            event_type=event_type,
            data=data,
            client_ip=client_ip,
            wallet_address=wallet_address,
            request_id=request_id
        )

        try:
            self.ensure_directory()
            with open(self.path, "a") as f:
                f.write(json.dumps(event) + "\n")

            logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
            return event["request_id"]

        except (OSError, TypeError) as e:
            logger.error(f"Failed to write audit event: {e}")
            return None

    # Convenience methods for specific event types

    def log_payment_required_sent(
        self,
        client_ip: Optional[str],
        amount: str,
        network: str,
        payee: str,
        description: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a 402 Payment Required response event."""
        return self.log_event(
            AuditEventType.PAYMENT_REQUIRED_SENT,
            data={
                "amount": amount,
                "network": network,
                "payee": payee,
                "description": description,
            },
            client_ip=client_ip,
            request_id=request_id
        )

    def log_payment_received(
        self,
        client_ip: Optional[str],
        payer: Optional[str],
        amount: str,
        network: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a payment proof received event."""
        return self.log_event(
            AuditEventType.PAYMENT_RECEIVED,
            data={"amount": amount, "network": network},
            client_ip=client_ip,
            wallet_address=payer,
            request_id=request_id
        )

    def log_payment_verified(
        self,
        client_ip: Optional[str],
        payer: Optional[str],
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a facilitator verification success."""
        return self.log_event(
            AuditEventType.PAYMENT_VERIFIED,
            data={"is_valid": True},
            client_ip=client_ip,
            wallet_address=payer,
            request_id=request_id
        )

    def log_payment_settled(
        self,
        client_ip: Optional[str],
        payer: Optional[str],
        tx_hash: Optional[str],
        network: str,
        amount: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a payment settlement event."""
        return self.log_event(
            AuditEventType.PAYMENT_SETTLED,
            data={"tx_hash": tx_hash, "network": network, "amount": amount},
            client_ip=client_ip,
            wallet_address=payer,
            request_id=request_id
        )

    def log_payment_failed(
        self,
        client_ip: Optional[str],
        status: str,
        detail: Optional[str],
        payer: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a payment failure (verification, settlement or facilitator error)."""
        return self.log_event(
            AuditEventType.PAYMENT_FAILED,
            data={"status": status, "detail": detail},
            client_ip=client_ip,
            wallet_address=payer,
            request_id=request_id
        )

    def log_gate_rejected(
        self,
        client_ip: Optional[str],
        path: str,
        error: str,
        status_code: int,
        wallet_address: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a request rejected by a gate."""
        return self.log_event(
            AuditEventType.GATE_REJECTED,
            data={"path": path, "error": error, "status_code": status_code},
            client_ip=client_ip,
            wallet_address=wallet_address,
            request_id=request_id
        )

    def log_access_granted(
        self,
        client_ip: Optional[str],
        path: str,
        tx_hash: Optional[str],
        wallet_address: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log a request that passed every gate."""
        return self.log_event(
            AuditEventType.ACCESS_GRANTED,
            data={"path": path, "tx_hash": tx_hash},
            client_ip=client_ip,
            wallet_address=wallet_address,
            request_id=request_id
        )

    def log_error(
        self,
        client_ip: Optional[str],
        error_type: str,
        error_message: str,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """Log an error event."""
        return self.log_event(
            AuditEventType.ERROR,
            data={"error_type": error_type, "error_message": error_message},
            client_ip=client_ip,
            request_id=request_id
        )

    def read(
        self,
        max_entries: Optional[int] = 100,
        event_type: Optional[AuditEventType] = None,
        request_id: Optional[str] = None
    ) -> list:
        """
        Read entries from the audit log.

        Args:
            max_entries: Maximum number of entries to return (None for all)
            event_type: Filter by event type (optional)
            request_id: Filter by request id (optional)

        Returns:
            List of audit events (most recent first)
        """
        if not self.path.exists():
            return []

        events = []
        try:
            with open(self.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    # Apply filters
                    if event_type and event.get("event_type") != event_type.value:
                        continue
                    if request_id and event.get("request_id") != request_id:
                        continue
                    events.append(event)
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []

        # Return most recent first, limited to max_entries
        return list(reversed(events))[:max_entries]

    def stats(self) -> Dict[str, Any]:
        """
        Get statistics from the audit log.

        Returns:
            Dict with event counts and date range
        """
        events = self.read(max_entries=None)
        events_by_type: Dict[str, int] = {}
        for event in events:
            event_type = event.get("event_type", "unknown")
            events_by_type[event_type] = events_by_type.get(event_type, 0) + 1

        return {
            "total_events": len(events),
            "events_by_type": events_by_type,
            "first_event": events[-1].get("timestamp") if events else None,
            "last_event": events[0].get("timestamp") if events else None,
            "log_path": str(self.path),
            "log_exists": self.path.exists(),
        }
