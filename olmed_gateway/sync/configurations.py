"""Product and order synchronization job definitions.

Each store keeps its definitions in a JSON file (camelCase keys) with
the layout::

    {
      "configurations": [ {...}, ... ],
      "version": "1.0",
      "lastModified": "2024-01-01T00:00:00+00:00"
    }

A file with the default definition is created when missing. Reads are
cached for ``cache_ttl`` seconds. The scheduler turns every active
definition into an interval job.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from olmed_gateway.clock import utcnow
from olmed_gateway.config import DEFAULT_BASE_URL, GatewayConfig
from olmed_gateway.scheduler.schedule import RequestTemplate, Schedule

logger = logging.getLogger(__name__)

CONFIGURATION_VERSION = "1.0"
DEFAULT_MARKETPLACE = "APTEKA_OLMED"
DEFAULT_INTERVAL_SECONDS = 7200

_DATE_FORMAT_TOKENS = (("yyyy", "%Y"), ("MM", "%m"), ("dd", "%d"))


def _strftime_format(date_format: str) -> str:
    """Accept both strftime patterns and ``yyyy-MM-dd`` style patterns."""
    if "%" in date_format:
        return date_format
    for token, directive in _DATE_FORMAT_TOKENS:
        date_format = date_format.replace(token, directive)
    return date_format


def _default_headers() -> Dict[str, str]:
    return {
        "accept": "application/json",
        "Content-Type": "application/json",
        "X-CSRF-TOKEN": "",
    }


@dataclass
class SyncConfiguration:
    """One synchronization job definition.

    Attributes:
        id: Job id used in the scheduler
        name: Display name
        description: Free-form description
        is_active: Inactive definitions are not scheduled
        interval_seconds: Time between runs
        method: HTTP method
        url: Target URL
        use_shared_auth: Send the shared Olmed bearer token
        headers: Request headers
        body: Static request body
        marketplace: Marketplace identifier sent to the ERP
        additional_parameters: Extra body fields
    """

    id: str
    name: str = ""
    description: str = ""
    is_active: bool = True
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    method: str = "POST"
    url: str = ""
    use_shared_auth: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    marketplace: str = ""
    additional_parameters: Dict[str, Any] = field(default_factory=dict)

    _FIELDS = (
        ("id", "id"),
        ("name", "name"),
        ("description", "description"),
        ("is_active", "isActive"),
        ("interval_seconds", "intervalSeconds"),
        ("method", "method"),
        ("url", "url"),
        ("use_shared_auth", "useOlmedAuth"),
        ("headers", "headers"),
        ("body", "body"),
        ("marketplace", "marketplace"),
        ("additional_parameters", "additionalParameters"),
    )

    def request_body(self, today: Optional[date] = None) -> str:
        return self.body

    def to_request_template(self, today: Optional[date] = None) -> RequestTemplate:
        return RequestTemplate(
            method=self.method,
            url=self.url,
            headers=dict(self.headers),
            body=self.request_body(today),
            use_shared_auth=self.use_shared_auth,
        )

    def to_schedule(self, today: Optional[date] = None) -> Schedule:
        return Schedule.interval(self.interval_seconds, self.to_request_template(today))

    def to_dict(self) -> Dict[str, Any]:
        return {camel: getattr(self, attr) for attr, camel in self._FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfiguration":
        """Build a definition from its JSON form (camelCase or snake_case keys)."""
        kwargs: Dict[str, Any] = {}
        for attr, camel in cls._FIELDS:
            if camel in data:
                kwargs[attr] = data[camel]
            elif attr in data:
                kwargs[attr] = data[attr]
        if not kwargs.get("id"):
            raise ValueError("Sync configuration is missing an id")
        return cls(**kwargs)


@dataclass
class ProductSyncConfiguration(SyncConfiguration):
    """Product synchronization definition; sends its static body."""


@dataclass
class OrderSyncConfiguration(SyncConfiguration):
    """Order synchronization definition with a rolling date range.

    Attributes:
        date_range_days: Days between dateFrom and dateTo
        use_current_date_as_end_date: dateTo is today, otherwise yesterday
        date_format: Date format (strftime or ``yyyy-MM-dd`` style)
    """

    date_range_days: int = 2
    use_current_date_as_end_date: bool = True
    date_format: str = "%Y-%m-%d"

    _FIELDS = SyncConfiguration._FIELDS + (
        ("date_range_days", "dateRangeDays"),
        ("use_current_date_as_end_date", "useCurrentDateAsEndDate"),
        ("date_format", "dateFormat"),
    )

    def date_range(self, today: Optional[date] = None) -> Tuple[date, date]:
        date_to = today or date.today()
        if not self.use_current_date_as_end_date:
            date_to -= timedelta(days=1)
        return date_to - timedelta(days=self.date_range_days), date_to

    def generate_request_body(self, today: Optional[date] = None) -> str:
        """Build the JSON body with marketplace, dateFrom and dateTo.

        Additional parameters are merged in last and may override the
        generated fields.
        """
        date_from, date_to = self.date_range(today)
        fmt = _strftime_format(self.date_format)
        body: Dict[str, Any] = {
            "marketplace": self.marketplace,
            "dateFrom": date_from.strftime(fmt),
            "dateTo": date_to.strftime(fmt),
        }
        body.update(self.additional_parameters or {})
        logger.debug(f"Generated request body for {self.id}: {body}")
        return json.dumps(body)

    def request_body(self, today: Optional[date] = None) -> str:
        return self.generate_request_body(today)


class SyncConfigurationStore:
    """JSON-file backed store of sync definitions.

    Subclasses set ``provider_name`` and ``configuration_class`` and
    supply the default definitions.

    Example:
        store = ProductSyncConfigurationStore(Path("product-sync-config.json"))
        for config in store.get_active_configurations():
            print(config.id, config.interval_seconds)
    """

    provider_name = "sync"
    configuration_class: Type[SyncConfiguration] = SyncConfiguration

    def __init__(
        self,
        path: Path,
        cache_ttl: int = 300,
        base_url: str = DEFAULT_BASE_URL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            path: JSON file holding the definitions
            cache_ttl: Seconds a loaded file stays cached
            base_url: ERP base URL used by the default definition
            clock: Time source for cache expiry and lastModified
        """
        self._path = Path(path)
        self._cache_ttl = cache_ttl
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._cache: Optional[List[SyncConfiguration]] = None
        self._loaded_at: Optional[datetime] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def default_configurations(self) -> List[SyncConfiguration]:
        return []

    def get_active_configurations(self) -> List[SyncConfiguration]:
        return [c for c in self._load() if c.is_active]

    def get_all_configurations(self) -> List[SyncConfiguration]:
        return list(self._load())

    def get_configuration(self, configuration_id: str) -> Optional[SyncConfiguration]:
        for configuration in self._load():
            if configuration.id == configuration_id:
                return configuration
        return None

    def save_configuration(self, configuration: SyncConfiguration) -> bool:
        """Add or replace a definition and write the file.

        Returns:
            True if the file was written
        """
        configurations = self.get_all_configurations()
        for index, existing in enumerate(configurations):
            if existing.id == configuration.id:
                configurations[index] = configuration
                logger.info(f"Updated {self.provider_name} sync configuration {configuration.id}")
                break
        else:
            configurations.append(configuration)
            logger.info(f"Added {self.provider_name} sync configuration {configuration.id}")

        saved = self._save(configurations)
        self.refresh_cache()
        return saved

    def delete_configuration(self, configuration_id: str) -> bool:
        """Delete a definition.

        Returns:
            True if the definition existed and the file was written
        """
        configurations = self.get_all_configurations()
        remaining = [c for c in configurations if c.id != configuration_id]
        if len(remaining) == len(configurations):
            return False

        saved = self._save(remaining)
        self.refresh_cache()
        if saved:
            logger.info(f"Deleted {self.provider_name} sync configuration {configuration_id}")
        return saved

    def refresh_cache(self) -> None:
        with self._lock:
            self._cache = None
            self._loaded_at = None

    def jobs(self, today: Optional[date] = None) -> List[Tuple[str, Schedule]]:
        """Schedules for every active definition, keyed by job id."""
        return [(c.id, c.to_schedule(today)) for c in self.get_active_configurations()]

    def _load(self) -> List[SyncConfiguration]:
        now = self._clock()
        with self._lock:
            if (
                self._cache is not None
                and self._loaded_at is not None
                and (now - self._loaded_at).total_seconds() < self._cache_ttl
            ):
                return self._cache

        self._ensure_file()

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            configurations = [
                self.configuration_class.from_dict(item)
                for item in data.get("configurations", [])
            ]
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load {self.provider_name} sync configuration from {self._path}: {e}")
            return self.default_configurations()

        with self._lock:
            self._cache = configurations
            self._loaded_at = now
        logger.info(f"Loaded {len(configurations)} {self.provider_name} sync configurations")
        return configurations

    def _ensure_file(self) -> None:
        if self._path.exists():
            return
        if self._save(self.default_configurations()):
            logger.info(f"Created default {self.provider_name} sync configuration file: {self._path}")

    def _save(self, configurations: List[SyncConfiguration]) -> bool:
        data = {
            "configurations": [c.to_dict() for c in configurations],
            "version": CONFIGURATION_VERSION,
            "lastModified": self._clock().isoformat(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save {self.provider_name} sync configuration to {self._path}: {e}")
            return False
        return True


class ProductSyncConfigurationStore(SyncConfigurationStore):
    """Product synchronization definitions."""

    provider_name = "product"
    configuration_class = ProductSyncConfiguration

    def default_configurations(self) -> List[SyncConfiguration]:
        return [
            ProductSyncConfiguration(
                id="olmed-sync-products",
                name="Olmed product synchronization",
                description="Fetches products from the Olmed API every 2 hours",
                interval_seconds=DEFAULT_INTERVAL_SECONDS,
                method="POST",
                url=f"{self._base_url}/erp-api/products/get-products",
                use_shared_auth=True,
                headers=_default_headers(),
                body=json.dumps({"marketplace": DEFAULT_MARKETPLACE}),
                marketplace=DEFAULT_MARKETPLACE,
            )
        ]


class OrderSyncConfigurationStore(SyncConfigurationStore):
    """Order synchronization definitions."""

    provider_name = "order"
    configuration_class = OrderSyncConfiguration

    def default_configurations(self) -> List[SyncConfiguration]:
        return [
            OrderSyncConfiguration(
                id="olmed-sync-orders",
                name="Olmed order synchronization",
                description="Fetches orders from the Olmed API every 2 hours for a rolling 2-day window",
                interval_seconds=DEFAULT_INTERVAL_SECONDS,
                method="POST",
                url=f"{self._base_url}/erp-api/orders/get-orders",
                use_shared_auth=True,
                headers=_default_headers(),
                marketplace=DEFAULT_MARKETPLACE,
                date_range_days=2,
                use_current_date_as_end_date=True,
                date_format="%Y-%m-%d",
            )
        ]


def stores_from_config(config: GatewayConfig) -> List[SyncConfigurationStore]:
    """Product and order stores at the configured locations."""
    return [
        ProductSyncConfigurationStore(
            config.sync.product_config_file,
            cache_ttl=config.sync.cache_ttl,
            base_url=config.olmed.base_url,
        ),
        OrderSyncConfigurationStore(
            config.sync.order_config_file,
            cache_ttl=config.sync.cache_ttl,
            base_url=config.olmed.base_url,
        ),
    ]
