# ipsec_agent/config.py
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

METADATA_URL_TEMPLATE = "http://{address}/2016-07-29"
DEFAULT_METADATA_ADDRESS = "169.254.169.250"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(populate_by_name=True)

    # Metadata service (cluster topology source)
    metadata_address: str = Field(DEFAULT_METADATA_ADDRESS, alias="RANCHER_METADATA_ADDRESS")
    change_check_interval: float = Field(2, alias="METADATA_CHANGE_CHECK_INTERVAL")

    # Control surface (ping / reload / loglevel)
    listen: str = Field("localhost:8111", alias="RANCHER_SERVICE_LISTEN_PORT")

    # Directory holding ike.conf and childsa.conf
    ipsec_config_dir: str = Field(".", alias="IPSEC_CONFIG_DIR")

    # Proxy ARP
    arp_interface: str = Field("eth0", alias="ARP_INTERFACE")

    # charon VICI socket and SA monitor timing
    charon_socket: str = Field("/var/run/charon.vici", alias="CHARON_VICI_SOCKET")
    sa_monitor_start_delay: float = Field(60, alias="SA_MONITOR_START_DELAY")
    sa_monitor_interval: float = Field(5, alias="SA_MONITOR_INTERVAL")

    debug: bool = Field(False, alias="DEBUG")

    @property
    def metadata_url(self) -> str:
        address = self.metadata_address or DEFAULT_METADATA_ADDRESS
        return METADATA_URL_TEMPLATE.format(address=address)

    @property
    def listen_host_port(self) -> tuple[str, int]:
        host, _, port = self.listen.rpartition(":")
        return host or "0.0.0.0", int(port)
