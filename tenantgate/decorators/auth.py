from functools import wraps
from typing import Optional, Union
from flask import g
from flask_jwt_extended import verify_jwt_in_request
from tenantgate.services.permissions import RequirementLike, parse_required
from tenantgate.services.policy import current_gate


def require_permissions(*required: RequirementLike, scope: Union[str, bool, None] = None, owner_column: str = 'owner_id'):
    """Gate a view on (module, action) pairs, e.g. @require_permissions('contacts.view').

    The record predicate of the first requirement's module (or of scope, when given)
    is stored in g.record_scope for the view to fold into its query. Pass scope=False
    for views that return no records. A denial raises PermissionDenied (403).
    """
    pairs = parse_required(required)
    if scope is False:
        module: Optional[str] = None
    elif scope:
        module = scope
    else:
        module = pairs[0][0] if pairs else None

    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            gate = current_gate()
            gate.authorize(*pairs)
            if module is not None:
                g.record_scope = gate.record_predicate(module, owner_column=owner_column)
            return fn(*args, **kwargs)
        return wrapper
    return outer
