import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from instrumented.properties import PropertyStore, system_properties

T = TypeVar("T")

LICENSE_KEY_NAME = "newrelicLicenseKey"
OTLP_ENDPOINT_NAME = "newrelicOtlpEndpoint"
DEFAULT_OTLP_ENDPOINT = "https://otlp.nr-data.net:4317"


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _identity(value: str) -> str:
    return value


def get_env_or_default(
    key: str,
    transformer: Callable[[str], T] = _identity,  # type: ignore
    default: Optional[T] = None,
    properties: Optional[PropertyStore] = None,
) -> Optional[T]:
    """
    Returns the value configured for the given key, looking first at environment
    variables and then at the property store. Blank values (empty or whitespace
    only) are ignored in both sources. The transformer is applied only to a value
    that was found; when none is found, the default is returned as is.
    """
    value = os.environ.get(key)

    if is_blank(value):
        value = (properties or system_properties).get(key)

    if is_blank(value):
        return default
    return transformer(value)  # type: ignore


@dataclass(init=False, frozen=True)
class NewRelicSettings:
    license_key: str
    otlp_endpoint: str

    def __init__(self, license_key: str = "", otlp_endpoint: str = "") -> None:
        object.__setattr__(self, "license_key", license_key)
        object.__setattr__(self, "otlp_endpoint", otlp_endpoint or DEFAULT_OTLP_ENDPOINT)

    @classmethod
    def from_env(cls, properties: Optional[PropertyStore] = None) -> "NewRelicSettings":
        return cls(
            license_key=get_env_or_default(
                LICENSE_KEY_NAME, default="", properties=properties
            ),  # type: ignore
            otlp_endpoint=get_env_or_default(
                OTLP_ENDPOINT_NAME, default=DEFAULT_OTLP_ENDPOINT, properties=properties
            ),  # type: ignore
        )

    def __repr__(self) -> str:
        # the license key is a secret: never print it
        masked = "***" if self.license_key else "''"
        return (
            f"NewRelicSettings(license_key={masked}, "
            f"otlp_endpoint='{self.otlp_endpoint}')"
        )


@dataclass(init=False, frozen=True)
class ServerSettings:
    host: str
    port: int

    def __init__(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)

    @classmethod
    def from_env(cls, properties: Optional[PropertyStore] = None) -> "ServerSettings":
        return cls(
            host=get_env_or_default(
                "APP_HOST", default="127.0.0.1", properties=properties
            ),  # type: ignore
            port=get_env_or_default(
                "APP_PORT", int, default=8080, properties=properties
            ),  # type: ignore
        )
