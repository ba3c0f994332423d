import os
import sys
from pathlib import Path
from typing import Final, NamedTuple

from dotenv import load_dotenv

from whaclog import __prog__

from .utils import cerr

_PORT_MIN: Final = 1
_PORT_MAX: Final = 65535


class EnvConf(NamedTuple):
    data_dir: Path
    app_port: int | None
    mqtt_broker: str | None
    mqtt_port: int | None

    @property
    def mqtt_enabled(self) -> bool:
        return self.mqtt_broker is not None and self.mqtt_port is not None


def _validate_port(name: str, *, required: bool) -> int | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        if not required:
            return None
        msg = f"[cyan]{name}[/] is not set"
        raise ValueError(msg)

    try:
        port = int(val)
    except ValueError as e:
        msg = f"[cyan]{name}[/] is not an integer: {val}"
        raise ValueError(msg) from e
    else:
        if not (_PORT_MIN <= port <= _PORT_MAX):
            msg = f"[cyan]{name}[/] is out of range: {val}"
            raise ValueError(msg)

    return port


def _validate_broker(name: str, *, required: bool) -> str | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        if not required:
            return None
        msg = f"[cyan]{name}[/] is not set"
        raise ValueError(msg)

    return val.strip()


def _validate_data_dir(name: str) -> Path:
    val = os.getenv(name, ".")
    path = Path(val)

    if path.exists() and not path.is_dir():
        msg = f"[cyan]{name}[/] is not a directory: {val}"
        raise ValueError(msg)

    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"[cyan]{name}[/] cannot be created: {e}"
            raise ValueError(msg) from e

    return path


def load_env(*, need_app_port: bool = False, need_mqtt: bool = False) -> EnvConf:
    """Load `.env` and validate the variables a command needs.

    All problems are reported together, then the process exits.

    Keyword Args:
        need_app_port: APP_PORT must be set
        need_mqtt: MQTT_BROKER and MQTT_PORT must be set
    """
    load_dotenv()

    errs: list[str] = []
    data_dir: Path | None = None
    app_port: int | None = None
    broker: str | None = None
    mqtt_port: int | None = None

    try:
        data_dir = _validate_data_dir("DATA_DIR")
    except ValueError as e:
        errs.append(str(e))

    try:
        app_port = _validate_port("APP_PORT", required=need_app_port)
    except ValueError as e:
        errs.append(str(e))

    try:
        broker = _validate_broker("MQTT_BROKER", required=need_mqtt)
    except ValueError as e:
        errs.append(str(e))

    try:
        mqtt_port = _validate_port("MQTT_PORT", required=need_mqtt)
    except ValueError as e:
        errs.append(str(e))

    # Broker and port come as a pair
    if not errs and (broker is None) != (mqtt_port is None):
        errs.append("[cyan]MQTT_BROKER[/] and [cyan]MQTT_PORT[/] must be set together")

    if errs or data_dir is None:
        cerr.print("".join(f"[bold bright_red]{__prog__}: env-error:[/] {e}\n" for e in errs), end="")
        sys.exit(1)

    return EnvConf(data_dir=data_dir, app_port=app_port, mqtt_broker=broker, mqtt_port=mqtt_port)
