"""Product and order synchronization job definitions."""

from olmed_gateway.sync.configurations import (
    OrderSyncConfiguration,
    OrderSyncConfigurationStore,
    ProductSyncConfiguration,
    ProductSyncConfigurationStore,
    SyncConfiguration,
    SyncConfigurationStore,
    stores_from_config,
)

__all__ = [
    "OrderSyncConfiguration",
    "OrderSyncConfigurationStore",
    "ProductSyncConfiguration",
    "ProductSyncConfigurationStore",
    "SyncConfiguration",
    "SyncConfigurationStore",
    "stores_from_config",
]
