"""
Session guard decorator — role and company-scope checks for routes.

One decorator covers every route:

    @bp.route("/rfps/<int:rfp_id>/stage", methods=["POST"])
    @require_session(role="buyer", rfp_scope="rfp_id")
    def change_stage_route(rfp_id):
        rfp = g.rfp
        ...

Checks, in order:
    1. a valid session exists (else 401) and its user is still active
    2. the session role matches ``role`` when given (else 403)
    3. when ``rfp_scope`` names a view argument, the RFP exists (else 404)
       and is visible to the session:
         buyers  → RFP belongs to the buyer's company
         suppliers → the supplier holds an invitation to the RFP
       (else 403)

On success ``g.current_user`` (and ``g.rfp`` when scoped) are set.
Scope is decided by company, never by ``rfp.user_id``.
"""

import functools
import logging

from flask import g

from rfp_platform.core.exceptions import ForbiddenError, NotFoundError, UnauthenticatedError
from rfp_platform.models import db
from rfp_platform.models.auth import User
from rfp_platform.models.rfp import RFP
from rfp_platform.models.supplier import SupplierContact

logger = logging.getLogger(__name__)


def current_session_user():
    """Return the active User behind the request's token, or raise 401."""
    user = getattr(g, "current_user", None)
    if user is not None:
        return user
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        raise UnauthenticatedError()
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthenticatedError("Session user no longer active")
    g.current_user = user
    return user


def supplier_contact_for(user, rfp_id):
    """Invitation binding *user* (a supplier) to the RFP, or None."""
    return SupplierContact.query.filter_by(rfp_id=rfp_id, portal_user_id=user.id).first()


def check_rfp_access(user, rfp):
    """Raise ForbiddenError unless *user* may see *rfp*."""
    if user.role == "buyer":
        if rfp.company_id != user.company_id:
            logger.warning("User %d denied: RFP %d belongs to another company", user.id, rfp.id)
            raise ForbiddenError("RFP belongs to another company")
        return
    if supplier_contact_for(user, rfp.id) is None:
        logger.warning("Supplier %d denied: not invited to RFP %d", user.id, rfp.id)
        raise ForbiddenError("Supplier is not invited to this RFP")


def require_session(role: str | None = None, rfp_scope: str | None = None):
    """
    Decorator: require an authenticated session, optionally of *role*,
    optionally scoped to the RFP whose id is the view argument *rfp_scope*.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_session_user()

            if role is not None and user.role != role:
                logger.warning(
                    "User %d denied: role '%s' required on %s (has '%s')",
                    user.id, role, f.__name__, user.role,
                )
                raise ForbiddenError(f"Only {role}s may perform this action")

            if rfp_scope is not None:
                rfp_id = kwargs.get(rfp_scope)
                rfp = db.session.get(RFP, rfp_id)
                if rfp is None:
                    raise NotFoundError(resource="RFP", resource_id=rfp_id)
                check_rfp_access(user, rfp)
                g.rfp = rfp

            return f(*args, **kwargs)
        return decorated
    return decorator
