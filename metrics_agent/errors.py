"""
Error taxonomy for the metrics agent.
"""


class AgentError(Exception):
    """Base class for all agent errors"""
    pass


class ConfigError(AgentError):
    """Configuration validation error"""
    pass


class MetricUnavailable(AgentError):
    """An operating-system metrics query failed"""
    pass


class ProcessEnumerationFailed(AgentError):
    """The process listing command could not run or its output was unusable"""
    pass


class StoreError(AgentError):
    """Base class for document store failures"""
    pass


class StoreConnectFailed(StoreError):
    """Could not open a connection to the document store"""
    pass


class StoreOperationFailed(StoreError):
    """A query, insert or update against the document store failed"""
    pass


class ServiceControlError(AgentError):
    """A service manager action failed"""
    pass
