from careconnect.core.api.client import PARTITION_DEFAULT_PARAMS, PARTITION_PATHS, ApiClient

__all__ = ["PARTITION_DEFAULT_PARAMS", "PARTITION_PATHS", "ApiClient"]
