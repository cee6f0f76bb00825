from royalty_ledger.platform.security.auth import get_current_account, require_internal_key
from royalty_ledger.platform.security.jwt import create_access_token

__all__ = ["create_access_token", "get_current_account", "require_internal_key"]
