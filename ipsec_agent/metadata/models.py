# ipsec_agent/metadata/models.py
"""
Cluster metadata documents

Field names follow the JSON served by the metadata service. Unknown fields
are ignored so newer metadata versions keep decoding.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MetadataModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # The metadata service serializes empty maps and lists as null
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Host(MetadataModel):
    uuid: str = ""
    name: str = ""
    hostname: str = ""
    agent_ip: str = ""
    environment_uuid: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)


class Container(MetadataModel):
    uuid: str = ""
    name: str = ""
    state: str = ""
    primary_ip: str = ""
    primary_mac_address: str = ""
    host_uuid: str = ""
    network_uuid: str = ""
    network_from_container_uuid: str = ""
    service_name: str = ""
    service_uuid: str = ""
    stack_name: str = ""
    environment_uuid: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)


class Service(MetadataModel):
    uuid: str = ""
    name: str = ""
    stack_name: str = ""
    kind: str = ""
    state: str = ""
    system: bool = False
    primary_service_name: str = ""
    environment_uuid: str = ""
    # "stack/service" -> alias
    links: Dict[str, str] = Field(default_factory=dict)
    containers: List[Container] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.stack_name}/{self.name}"


class Network(MetadataModel):
    uuid: str = ""
    name: str = ""
    environment_uuid: str = ""
    default: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Environment(MetadataModel):
    uuid: str = ""
    name: str = ""
    hosts: List[Host] = Field(default_factory=list)
    containers: List[Container] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
    networks: List[Network] = Field(default_factory=list)


class ClusterSnapshot(MetadataModel):
    """Everything a topology refresh reads, fetched in one go"""

    self_container: Container
    self_host: Host
    self_service: Service
    hosts: List[Host] = Field(default_factory=list)
    containers: List[Container] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
    networks: List[Network] = Field(default_factory=list)
    region: Optional[str] = None
    # Linked environments, only populated when a region is set
    environments: List[Environment] = Field(default_factory=list)
