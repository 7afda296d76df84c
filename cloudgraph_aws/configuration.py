import logging
import threading
from functools import lru_cache
from typing import Any, ClassVar, Dict, Optional, Type

from attrs import define, field, fields_dict
from boto3.session import Session as BotoSession
from botocore.client import BaseClient
from botocore.config import Config as BotoConfig

from cloudgraph.json import from_json as from_js
from cloudgraph.types import Json

log = logging.getLogger("cloudgraph.aws")

GLOBAL_REGION = "global"
DEFAULT_REGION = "us-east-1"


@define(hash=True, slots=False)
class AwsSessionHolder:
    access_key_id: Optional[str]
    secret_access_key: Optional[str]
    profile: Optional[str] = None
    # Only here to override in tests
    session_class_factory: Type[BotoSession] = BotoSession
    session_lock: threading.Lock = threading.Lock()

    # noinspection PyUnusedLocal
    @lru_cache(maxsize=128)
    def __session(self, profile: Optional[str]) -> BotoSession:
        if profile:
            log.debug(f"Create AWS session for profile {profile}")
            return self.session_class_factory(profile_name=profile, region_name=DEFAULT_REGION)
        else:
            return self.session_class_factory(
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                region_name=DEFAULT_REGION,
            )

    def client(
        self, aws_service: str, region_name: Optional[str] = None, config: Optional[BotoConfig] = None
    ) -> BaseClient:
        """
        Create a service client. Sessions are not thread safe, but clients are:
        creation is synchronized, the returned client can be shared.
        """
        region = DEFAULT_REGION if region_name in (None, GLOBAL_REGION) else region_name
        with self.session_lock:
            session = self.__session(self.profile)
            return session.client(aws_service, region_name=region, config=config)


@define(slots=False)
class AwsConfig:
    kind: ClassVar[str] = "aws"
    access_key_id: Optional[str] = field(
        default=None,
        metadata={"description": "AWS Access Key ID (null to load from env - recommended)"},
    )
    secret_access_key: Optional[str] = field(
        default=None,
        metadata={"description": "AWS Secret Access Key (null to load from env - recommended)"},
    )
    profile: Optional[str] = field(default=None, metadata={"description": "AWS profile to use"})
    region: str = field(default=DEFAULT_REGION, metadata={"description": "AWS region to fetch"})
    sync: Dict[str, bool] = field(
        factory=dict,
        metadata={
            "description": "Enable or disable the sync of services and resource types.\n"
            "Keys: cloud.<service>.sync or cloud.<service>.<type>.sync. Everything is enabled by default.\n"
            'Example: {"cloud.infra.instance.sync": false}'
        },
    )
    max_workers: int = field(
        default=16,
        metadata={"description": "Number of threads used for every parallel fan-out during a fetch."},
    )
    _sessions: Optional[AwsSessionHolder] = None
    _lock: threading.Lock = field(factory=threading.Lock)

    def sessions(self) -> AwsSessionHolder:
        if self._sessions is None:
            with self._lock:
                if self._sessions is None:
                    self._sessions = AwsSessionHolder(
                        access_key_id=self.access_key_id,
                        secret_access_key=self.secret_access_key,
                        profile=self.profile,
                    )
        return self._sessions

    def get_bool(self, key: str, default: bool = True) -> bool:
        value = self.sync.get(key)
        return value if isinstance(value, bool) else default

    def service_sync(self, service: str) -> bool:
        return self.get_bool(f"cloud.{service}.sync")

    def type_sync(self, service: str, resource_type: str) -> bool:
        return self.get_bool(f"cloud.{service}.{resource_type}.sync")

    @staticmethod
    def from_json(js: Json) -> "AwsConfig":
        valid_fields = {name for name in fields_dict(AwsConfig) if not name.startswith("_")}
        return from_js({k: v for k, v in js.items() if k in valid_fields}, AwsConfig)

    def __getstate__(self) -> Dict[str, Any]:
        d = self.__dict__.copy()
        d.pop("_lock", None)
        d.pop("_sessions", None)
        return d

    def __setstate__(self, d: Dict[str, Any]) -> None:
        d["_lock"] = threading.Lock()
        d["_sessions"] = None
        self.__dict__.update(d)
