"""Field extraction from raw ``NameRegistered`` log data.

The non-indexed event arguments arrive as one ABI-encoded blob. Each
registrar controller generation emits its own argument list:

* legacy:   name, cost, expires
* enhanced: name, base cost, premium, expires
* referral: name, base cost, premium, expires, referrer
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from enswatch.ingest import load_contracts

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "unknown"


class AbiLayout(str, enum.Enum):
    LEGACY = "legacy"
    ENHANCED = "enhanced"
    REFERRAL = "referral"


EVENT_DATA_TYPES: dict[AbiLayout, tuple[str, ...]] = {
    AbiLayout.LEGACY: ("string", "uint256", "uint256"),
    AbiLayout.ENHANCED: ("string", "uint256", "uint256", "uint256"),
    AbiLayout.REFERRAL: ("string", "uint256", "uint256", "uint256", "bytes32"),
}


@dataclass(slots=True)
class RegistrationFields:
    name: str
    cost: str
    layout: AbiLayout
    base_cost: str | None = None
    premium: str | None = None
    expires: int | None = None

    @classmethod
    def sentinel(cls, layout: AbiLayout) -> RegistrationFields:
        return cls(name=UNKNOWN_NAME, cost="0", layout=layout)


def controller_layouts() -> dict[str, AbiLayout]:
    return {
        contract.address.lower(): AbiLayout(contract.layout)
        for contract in load_contracts("controller")
        if contract.layout
    }


def layout_for(contract: str, layouts: Mapping[str, AbiLayout] | None = None) -> AbiLayout:
    layouts = controller_layouts() if layouts is None else layouts
    layout = layouts.get((contract or "").lower())
    if layout is None:
        logger.warning("Unknown registrar controller %s, assuming legacy log layout", contract)
        return AbiLayout.LEGACY
    return layout


def _to_bytes(data: str) -> bytes:
    if data.startswith(("0x", "0X")):
        data = data[2:]
    return bytes.fromhex(data)


def decode_registration_data(
    data: str,
    contract: str,
    layouts: Mapping[str, AbiLayout] | None = None,
) -> RegistrationFields:
    """Decode name and cost fields; never raises.

    An undecodable blob yields ``name="unknown"`` and ``cost="0"`` so the
    event can still be recorded.
    """
    layout = layout_for(contract, layouts)
    try:
        values = decode(list(EVENT_DATA_TYPES[layout]), _to_bytes(data or ""))
    except (DecodingError, ValueError) as exc:
        logger.error("Could not decode %s registration log from %s: %s", layout.value, contract, exc)
        return RegistrationFields.sentinel(layout)

    name = values[0].rstrip("\x00")
    if layout is AbiLayout.LEGACY:
        _, cost, expires = values
        return RegistrationFields(name=name, cost=str(cost), layout=layout, expires=expires)
    _, base_cost, premium, expires = values[:4]
    return RegistrationFields(
        name=name,
        cost=str(base_cost + premium),
        layout=layout,
        base_cost=str(base_cost),
        premium=str(premium),
        expires=expires,
    )
