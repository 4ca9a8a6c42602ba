"""
Error Types

Failures raised while resolving, downloading and recording plugins.
"""


class PluginSyncError(Exception):
    """Base error for plugin-sync"""


class NotFoundError(PluginSyncError):
    """Raised when no version or artifact satisfies a request"""


class ParseError(PluginSyncError):
    """Raised when a version token, range, catalog response or file is malformed"""


class LedgerFormatError(ParseError):
    """Raised when the install ledger file has an invalid top-level shape"""


class NetworkError(PluginSyncError):
    """Raised on transport or HTTP failures"""


class IntegrityError(PluginSyncError):
    """Raised when a downloaded artifact does not match its declared digest"""


class ConfigError(PluginSyncError):
    """Raised for an unrecognized service tag or invalid runtime context"""
