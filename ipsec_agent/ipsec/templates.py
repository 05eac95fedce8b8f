# ipsec_agent/ipsec/templates.py
"""
IPSec Configuration Templates

Loads the base IKE and CHILD_SA configuration (ike.conf, childsa.conf) used
to build per-peer connections. Missing files fall back to built-in defaults.
Each document must decode into its VICI structure; the revision is a hash
over both documents' bytes and changes only when either of them does.
"""

import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InvalidTemplateError

logger = logging.getLogger('ipsec-agent.templates')

IKE_CONF_NAME = "ike.conf"
CHILD_SA_CONF_NAME = "childsa.conf"

DEFAULT_IKE_CONF = b"""{
    "version" : "2",
    "local_addrs": [],
    "proposals": ["aes128gcm16-sha256-modp2048", "aes-sha1-modp2048"],
    "encap": "yes",
    "dpd_delay": "10s",
    "keyingtries": "0",
    "local": {
        "auth": "psk"
    },
    "remote": {
        "auth": "psk"
    }
}"""

DEFAULT_CHILD_SA_CONF = b"""{
    "local_ts": ["0.0.0.0/0"],
    "remote_ts": ["0.0.0.0/0"],
    "esp_proposals":  ["aes128gcm16-modp2048", "aes-modp2048"],
    "start_action": "start",
    "close_action": "start",
    "dpd_action": "restart",
    "mode": "tunnel",
    "policies": "no"
}"""


class ViciModel(BaseModel):
    # Unknown keys are dropped like the daemon's own config decoder does
    model_config = ConfigDict(extra="ignore")


class AuthConf(ViciModel):
    id: Optional[str] = None
    round: Optional[str] = None
    auth: Optional[str] = None
    eap_id: Optional[str] = None
    pubkeys: Optional[List[str]] = None


class ChildSAConf(ViciModel):
    local_ts: Optional[List[str]] = None
    remote_ts: Optional[List[str]] = None
    esp_proposals: Optional[List[str]] = None
    start_action: Optional[str] = None
    close_action: Optional[str] = None
    reqid: Optional[str] = None
    rekey_time: Optional[str] = None
    replay_window: Optional[str] = None
    mode: Optional[str] = None
    policies: Optional[str] = None
    updown: Optional[str] = None
    priority: Optional[str] = None
    mark_in: Optional[str] = None
    mark_out: Optional[str] = None
    dpd_action: Optional[str] = None
    life_time: Optional[str] = None


class IKEConf(ViciModel):
    local_addrs: Optional[List[str]] = None
    remote_addrs: Optional[List[str]] = None
    proposals: Optional[List[str]] = None
    version: Optional[str] = None
    encap: Optional[str] = None
    keyingtries: Optional[str] = None
    rekey_time: Optional[str] = None
    dpd_delay: Optional[str] = None
    mobike: Optional[str] = None
    pools: Optional[List[str]] = None
    local: Optional[AuthConf] = None
    remote: Optional[AuthConf] = None
    children: Dict[str, ChildSAConf] = Field(default_factory=dict)


class Templates:
    """
    Validated, fingerprinted IKE and CHILD_SA templates

    reload() is all-or-nothing: on any failure the previously loaded
    templates and revision stay in effect.
    """

    def __init__(self, config_dir: str = "."):
        self.config_dir = Path(config_dir)
        self._lock = threading.Lock()
        self._ike_conf_template: Optional[bytes] = None
        self._child_sa_conf_template: Optional[bytes] = None
        self._revision = ""

    def _load_bytes(self, name: str, default: bytes) -> bytes:
        """Read a template file; a missing file means the default applies"""
        path = self.config_dir / name
        try:
            return path.read_bytes()
        except FileNotFoundError:
            logger.debug(f"{path} not found, using built-in default")
            return default

    @staticmethod
    def _validate(name: str, raw: bytes, model: type):
        try:
            model.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Failed to unmarshal {name}: {e}\n\t{raw.decode('utf-8', 'replace')}")
            raise InvalidTemplateError(name, raw, str(e)) from e

    def reload(self) -> str:
        """
        Load and validate both templates, returns the new revision

        Raises:
            InvalidTemplateError: if a document doesn't decode
            OSError: if a template file exists but cannot be read
        """
        ike_conf = self._load_bytes(IKE_CONF_NAME, DEFAULT_IKE_CONF)
        self._validate(IKE_CONF_NAME, ike_conf, IKEConf)

        child_sa_conf = self._load_bytes(CHILD_SA_CONF_NAME, DEFAULT_CHILD_SA_CONF)
        self._validate(CHILD_SA_CONF_NAME, child_sa_conf, ChildSAConf)

        digest = hashlib.sha256()
        digest.update(ike_conf)
        digest.update(child_sa_conf)
        revision = digest.hexdigest()

        with self._lock:
            self._ike_conf_template = ike_conf
            self._child_sa_conf_template = child_sa_conf
            self._revision = revision

        logger.info(f"Loaded IPSec templates, revision {revision[:12]}")
        return revision

    def revision(self) -> str:
        return self._revision

    def _require(self, template: Optional[bytes]) -> bytes:
        if template is None:
            raise RuntimeError("templates not loaded, call reload() first")
        return template

    def new_ike_config(self) -> IKEConf:
        """Fresh IKE config decoded from the template, safe to mutate"""
        # Validated in reload()
        return IKEConf.model_validate_json(self._require(self._ike_conf_template))

    def new_child_sa_config(self) -> ChildSAConf:
        """Fresh CHILD_SA config decoded from the template, safe to mutate"""
        return ChildSAConf.model_validate_json(self._require(self._child_sa_conf_template))
