# ipsec_agent/store/network.py
"""
Network helpers

Reads the CNI configuration stored in a network's metadata to find the
bridge subnet and the subnet prefix used for container addresses.
"""

import copy
import logging
from typing import Any, Tuple

from ..metadata.models import Container, Host, Network

logger = logging.getLogger('ipsec-agent.store.network')

DEFAULT_SUBNET_PREFIX = "/16"
HOST_LABEL_KEYWORD = "__host_label__"
RUNNING_STATES = ("running", "starting", "stopping")


def is_container_considered_running(container: Container) -> bool:
    """Stopping and starting containers still own their address"""
    return container.state in RUNNING_STATES


def update_cni_config_by_keywords(config: Any, host: Host) -> Any:
    """
    Replace "__host_label__: <label>" string values with the host's label value

    Works on a copy; missing labels become empty strings.
    """
    if not isinstance(config, dict):
        return config

    props = {}
    for key, value in config.items():
        if isinstance(value, str):
            if value.startswith(HOST_LABEL_KEYWORD):
                _, _, label = value.partition(":")
                props[key] = host.labels.get(label.strip(), "") if label else ""
            else:
                props[key] = value
        else:
            props[key] = update_cni_config_by_keywords(copy.deepcopy(value), host)
    return props


def _cni_config(network: Network) -> dict:
    conf = network.metadata.get("cniConfig")
    return conf if isinstance(conf, dict) else {}


def get_bridge_info(network: Network, host: Host) -> Tuple[str, str]:
    """
    Find the bridge name and bridge subnet in the network's CNI config

    Returns:
        (bridge, bridge_subnet); bridge is empty unless a rancher-bridge
        config names one
    """
    bridge = ""
    bridge_subnet = ""
    for conf_file in _cni_config(network).values():
        props = update_cni_config_by_keywords(conf_file, host)
        if not isinstance(props, dict):
            continue
        cni_type = props.get("type", "")
        check_bridge = props.get("bridge", "")
        subnet = props.get("bridgeSubnet", "")
        bridge_subnet = subnet if isinstance(subnet, str) else ""

        if cni_type == "rancher-bridge" and check_bridge:
            bridge = check_bridge
            break

    return bridge, bridge_subnet


def get_subnet_prefix(network: Network) -> str:
    """Subnet prefix ("/16" style) of the first CNI config file"""
    for conf_file in _cni_config(network).values():
        ipam = conf_file.get("ipam") if isinstance(conf_file, dict) else None
        if not isinstance(ipam, dict):
            logger.error(f"couldn't find ipam key in network config of {network.name}")
            return DEFAULT_SUBNET_PREFIX

        prefix = ipam.get("subnetPrefixSize")
        if not isinstance(prefix, str):
            logger.debug(f"couldn't find subnetPrefixSize in ipam config of {network.name}")
            return DEFAULT_SUBNET_PREFIX
        return prefix

    return DEFAULT_SUBNET_PREFIX
