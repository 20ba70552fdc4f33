"""
Trade journal Cloud Functions.

Triggers:
- on_user_created: provisions users/{uid} + dashboards/{uid} at signup
- delete_account: callable; soft-deletes users/{uid}, then removes the auth user
- create_master_trade: callable; writes master_trades/{id} and fans it out
- reset_dashboard: callable; resets a user's balance and dashboard
- on_master_trade_updated: cascades master status changes to child trades
- monthly_rollover: 00:00 UTC on the 1st, closes the dashboard period
"""

import logging
from typing import Any, Dict, Optional

from firebase_admin import auth as admin_auth
from firebase_functions import firestore_fn, https_fn, identity_fn, options, scheduler_fn

from tradejournal.common.errors import InvalidInputError, JournalError, rpc_error_code
from tradejournal.common.logging import bind_request_id, init_structured_logging, log_event
from tradejournal.persistence.firebase_client import get_firestore_client
from tradejournal.service import JournalService

init_structured_logging(service="trade-journal-functions")
logger = logging.getLogger(__name__)

_service: Optional[JournalService] = None


def _get_service() -> JournalService:
    global _service
    if _service is None:
        _service = JournalService(get_firestore_client())
    return _service


def _https_error(err: JournalError) -> https_fn.HttpsError:
    details = {"errors": err.details} if isinstance(err, InvalidInputError) and err.details else None
    return https_fn.HttpsError(
        code=https_fn.FunctionsErrorCode[rpc_error_code(err)],
        message=str(err),
        details=details,
    )


@identity_fn.before_user_created()
def on_user_created(event: identity_fn.AuthBlockingEvent) -> Optional[identity_fn.BeforeCreateResponse]:
    """
    Provision the journal account for a new signup.

    Errors are logged and never block the signup itself.
    """
    uid = event.data.uid
    with bind_request_id(request_id=getattr(event, "event_id", None)):
        try:
            _get_service().handle_user_created(uid, event.data.email)
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "account.provision_failed",
                severity="ERROR",
                message=f"Error provisioning user {uid}: {e}",
                exc_info=True,
                uid=uid,
            )
    return None


def _delete_auth_user(uid: str) -> None:
    try:
        admin_auth.delete_user(uid)
    except admin_auth.UserNotFoundError:
        logger.warning("delete_account: auth user %s already removed", uid)


@https_fn.on_call(cors=options.CorsOptions(cors_origins="*", cors_methods=["POST"]))
def delete_account(req: https_fn.CallableRequest) -> Dict[str, Any]:
    """
    Soft-delete the caller's journal account, then remove their auth record.
    """
    if not req.auth:
        raise https_fn.HttpsError(
            code=https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            message="Authentication required",
        )
    uid = req.auth.uid
    with bind_request_id():
        try:
            _get_service().delete_account(uid, delete_auth_user=_delete_auth_user)
        except JournalError as e:
            log_event(logger, "account.delete_failed", severity="ERROR", exc_info=True, uid=uid, error=str(e))
            raise _https_error(e) from e
        except Exception as e:  # noqa: BLE001
            logger.exception("delete_account failed for %s: %s", uid, e)
            raise https_fn.HttpsError(
                code=https_fn.FunctionsErrorCode.INTERNAL,
                message="Failed to delete account; retry is safe",
            ) from e
    return {"userId": uid, "accountStatus": "deleted"}


@https_fn.on_call(cors=options.CorsOptions(cors_origins="*", cors_methods=["POST"]))
def create_master_trade(req: https_fn.CallableRequest) -> Dict[str, Any]:
    with bind_request_id():
        try:
            return _get_service().create_master_trade(req.data)
        except JournalError as e:
            log_event(logger, "master_trade.create_failed", severity="ERROR", exc_info=True, error=str(e))
            raise _https_error(e) from e
        except Exception as e:  # noqa: BLE001
            logger.exception("create_master_trade failed: %s", e)
            raise https_fn.HttpsError(
                code=https_fn.FunctionsErrorCode.INTERNAL,
                message="Failed to create master trade",
            ) from e


@https_fn.on_call(cors=options.CorsOptions(cors_origins="*", cors_methods=["POST"]))
def reset_dashboard(req: https_fn.CallableRequest) -> Dict[str, Any]:
    with bind_request_id():
        try:
            return _get_service().reset_dashboard(req.data)
        except JournalError as e:
            log_event(logger, "dashboard.reset_failed", severity="ERROR", exc_info=True, error=str(e))
            raise _https_error(e) from e
        except Exception as e:  # noqa: BLE001
            logger.exception("reset_dashboard failed: %s", e)
            raise https_fn.HttpsError(
                code=https_fn.FunctionsErrorCode.INTERNAL,
                message="Failed to reset dashboard",
            ) from e


@firestore_fn.on_document_updated(document="master_trades/{tradeId}")
def on_master_trade_updated(event: firestore_fn.Event[firestore_fn.Change[Optional[firestore_fn.DocumentSnapshot]]]) -> None:
    master_id = event.params["tradeId"]
    before = event.data.before.to_dict() if event.data.before else None
    after = event.data.after.to_dict() if event.data.after else None
    with bind_request_id(request_id=event.id):
        try:
            _get_service().handle_master_trade_updated(master_id, before, after)
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "master_trade.cascade_failed",
                severity="ERROR",
                message=f"Failed to cascade master update {master_id}: {e}",
                exc_info=True,
                master_id=master_id,
            )


@scheduler_fn.on_schedule(schedule="0 0 1 * *", timezone=scheduler_fn.Timezone("UTC"))
def monthly_rollover(event: scheduler_fn.ScheduledEvent) -> None:
    with bind_request_id(request_id=event.job_name):
        try:
            _get_service().run_monthly_rollover(now=event.schedule_time)
        except Exception as e:  # noqa: BLE001
            log_event(logger, "rollover.failed", severity="ERROR", exc_info=True, error=str(e))
