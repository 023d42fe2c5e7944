"""
Запись config.json sing-box и перезагрузка демона.

Две отдельные ступени с явным результатом:
  WRITTEN                - файл записан, демон перечитал конфиг;
  WRITTEN_RELOAD_FAILED  - файл записан, но reload не прошёл (демон на старом конфиге до следующего reload);
  WRITE_FAILED           - конфиг не собран или не записан, файл на диске не изменился.
Ни один из результатов не откатывает уже закоммиченные изменения в БД.
"""
import enum
import logging
import os
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass

from sqlalchemy.orm import Session

import config
from db.crud import list_active_accounts, list_enabled_inbounds
from services.exceptions import ReloadSignalError, SynthesisError
from services.singbox import render, synthesize

logger = logging.getLogger(__name__)


class ReloadStatus(enum.Enum):
    WRITTEN = "written"
    WRITTEN_RELOAD_FAILED = "written_reload_failed"
    WRITE_FAILED = "write_failed"


@dataclass
class ReloadOutcome:
    status: ReloadStatus
    error: str | None = None

    @property
    def written(self) -> bool:
        return self.status is not ReloadStatus.WRITE_FAILED

    @property
    def stale(self) -> bool:
        """Демон работает не на последнем конфиге."""
        return self.status is not ReloadStatus.WRITTEN


class ConfigReloader:
    """
    Пишет документ атомарно (tmp + os.replace) и дёргает reload с таймаутом.

    reload повторяется до attempts раз с линейной паузой backoff * номер попытки.
    stale = демон не на последнем записанном конфиге (счётчик трафика повторит публикацию).
    generation растёт после каждого успешного reload: sing-box при этом обнуляет
    счётчики v2ray_api, и счётчик трафика по нему сбрасывает свои отметки.
    lock держат и публикация, и опрос stats, чтобы reload не попал между ними.
    """

    def __init__(
        self,
        config_path: str = config.SINGBOX_CONFIG_PATH,
        reload_command: list[str] | None = None,
        timeout: float = config.SINGBOX_RELOAD_TIMEOUT,
        attempts: int = config.SINGBOX_RELOAD_ATTEMPTS,
        backoff: float = config.SINGBOX_RELOAD_BACKOFF,
    ):
        self.config_path = str(config_path)
        self.reload_command = list(reload_command or config.SINGBOX_RELOAD_COMMAND)
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.stale = False
        self.generation = 0
        self.lock = threading.Lock()

    def write(self, document: dict) -> None:
        text = render(document) + "\n"
        directory = os.path.dirname(os.path.abspath(self.config_path))
        fd, tmp_path = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.config_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def signal_reload(self) -> None:
        try:
            subprocess.run(
                self.reload_command,
                check=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ReloadSignalError(f"reload timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode(errors="replace").strip()
            raise ReloadSignalError(f"reload exited with {e.returncode}: {stderr}") from e
        except OSError as e:
            raise ReloadSignalError(f"reload command failed: {e}") from e

    def _reload_with_retry(self) -> None:
        for attempt in range(1, self.attempts + 1):
            try:
                self.signal_reload()
                return
            except ReloadSignalError as e:
                if attempt == self.attempts:
                    raise
                logger.warning("sing-box reload attempt %d/%d failed: %s", attempt, self.attempts, e)
                time.sleep(self.backoff * attempt)

    def publish(self, document: dict) -> ReloadOutcome:
        with self.lock:
            try:
                self.write(document)
            except OSError as e:
                self.stale = True
                logger.error("Config write failed: path=%s error=%s", self.config_path, e)
                return ReloadOutcome(ReloadStatus.WRITE_FAILED, str(e))
            try:
                self._reload_with_retry()
            except ReloadSignalError as e:
                self.stale = True
                logger.warning("Config written but sing-box reload failed (daemon on stale config): %s", e)
                return ReloadOutcome(ReloadStatus.WRITTEN_RELOAD_FAILED, str(e))
            self.stale = False
            self.generation += 1
        logger.info("Config written to %s and sing-box reloaded", self.config_path)
        return ReloadOutcome(ReloadStatus.WRITTEN)


_reloader = ConfigReloader()


def get_reloader() -> ConfigReloader:
    return _reloader


def set_reloader(reloader: ConfigReloader) -> None:
    global _reloader
    _reloader = reloader


def apply_config(db: Session, reloader: ConfigReloader | None = None) -> ReloadOutcome:
    """
    Собрать конфиг из текущего состояния БД, записать и перезагрузить sing-box.
    Ошибка сборки = WRITE_FAILED: старый файл остаётся как был.
    """
    reloader = reloader or _reloader
    try:
        document = synthesize(list_active_accounts(db), list_enabled_inbounds(db))
    except SynthesisError as e:
        logger.error("Config synthesis failed, keeping previous config: %s", e)
        return ReloadOutcome(ReloadStatus.WRITE_FAILED, str(e))
    return reloader.publish(document)
