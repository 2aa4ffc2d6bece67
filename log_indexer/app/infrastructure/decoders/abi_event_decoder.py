from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from eth_abi import decode as abi_decode
from eth_utils import decode_hex, encode_hex, keccak, to_checksum_address

from log_indexer.app.domain.errors import ConfigurationError
from log_indexer.app.domain.models import DecodedEvent, DecodeFailure, DecodeResult
from log_indexer.app.domain.ports.out import EventDecoder


logger = logging.getLogger(__name__)

# ABI integer types at or above this width leave the decoder as decimal strings
_WIDE_INT_BITS = 64

_INT_TYPE_RE = re.compile(r"^u?int(\d*)$")
_ARRAY_SUFFIX_RE = re.compile(r"^(.*)\[(\d*)\]$")
_POSITIONAL_NAME_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class _EventSpec:
    name: str
    signature: str
    topic0: str
    indexed: list[dict[str, Any]]
    non_indexed: list[dict[str, Any]]
    non_indexed_types: list[str]


def load_abi(abi_path: Path) -> list[dict[str, Any]]:
    """
    Load an ABI from disk.

    Common formats:
    - [ ... ] (ABI list)
    - { "abi": [ ... ] } (Hardhat/Brownie/Foundry artifact)
    """
    if not abi_path.is_file():
        raise ConfigurationError(f"ABI file not found: {abi_path}")
    try:
        data = json.loads(abi_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Unable to read ABI file {abi_path}: {exc}") from exc

    if isinstance(data, list):
        abi = data
    elif isinstance(data, dict) and isinstance(data.get("abi"), list):
        abi = data["abi"]
    else:
        raise ConfigurationError(
            f"Unsupported ABI JSON format in {abi_path}. Expected list or dict with 'abi' list."
        )
    return [x for x in abi if isinstance(x, dict)]


def canonical_type(param: Mapping[str, Any]) -> str:
    """Canonical ABI type of a parameter, expanding tuple components."""
    typ = str(param["type"])
    if not typ.startswith("tuple"):
        return typ
    suffix = typ[len("tuple"):]
    inner = ",".join(canonical_type(c) for c in param.get("components", []))
    return f"({inner}){suffix}"


def event_signature(event_abi: Mapping[str, Any]) -> str:
    name = event_abi.get("name")
    inputs = event_abi.get("inputs", [])
    if not isinstance(name, str) or not isinstance(inputs, list):
        raise ValueError("Invalid event ABI: missing name/inputs")
    return f"{name}({','.join(canonical_type(i) for i in inputs)})"


def _is_dynamic(typ: str) -> bool:
    return (
        typ in ("string", "bytes")
        or typ.endswith("]")
        or typ.startswith("(")
    )


class AbiEventDecoder(EventDecoder):
    """
    ABI-based decoder for every event of a contract interface.

    It:
    - loads the ABI and indexes non-anonymous events by topic0,
    - decodes indexed args from topics and non-indexed args from `data`,
    - normalises values so they serialise to JSON without precision loss.

    decode() never raises; anything that does not match a known event
    yields a DecodeFailure.
    """

    def __init__(self, *, abi: Sequence[Mapping[str, Any]]) -> None:
        self._events: dict[str, _EventSpec] = {}
        for item in abi:
            if item.get("type") != "event" or item.get("anonymous"):
                continue
            spec = self._build_spec(item)
            self._events[spec.topic0] = spec

        logger.debug("Loaded %s event signatures from ABI", len(self._events))

    @classmethod
    def from_file(cls, abi_path: Path) -> "AbiEventDecoder":
        abi = load_abi(abi_path)
        try:
            return cls(abi=abi)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid event definitions in {abi_path}: {exc}") from exc

    @property
    def event_names(self) -> list[str]:
        return sorted({spec.name for spec in self._events.values()})

    def topic0_for(self, event_name: str) -> str | None:
        for spec in self._events.values():
            if spec.name == event_name:
                return spec.topic0
        return None

    def decode(self, *, topics: Sequence[str], data: str) -> DecodeResult:
        if not topics:
            return DecodeFailure("missing topics")

        topic0 = str(topics[0]).lower()
        spec = self._events.get(topic0)
        if spec is None:
            return DecodeFailure(f"unknown topic0 {topic0}")

        if len(topics) - 1 != len(spec.indexed):
            return DecodeFailure(
                f"topic count mismatch for {spec.name}: expected {len(spec.indexed) + 1}, got {len(topics)}"
            )

        try:
            args = self._decode_args(spec, topics[1:], data)
        except Exception as exc:  # eth_abi raises a zoo of decoding errors
            return DecodeFailure(f"data decode error for {spec.name}: {exc}")

        return DecodedEvent(event_name=spec.name, args=args)

    # ---------------------------------------------------------------------
    # ABI helpers
    # ---------------------------------------------------------------------

    def _build_spec(self, event_abi: Mapping[str, Any]) -> _EventSpec:
        signature = event_signature(event_abi)
        inputs: list[dict[str, Any]] = list(event_abi.get("inputs", []))
        non_indexed = [i for i in inputs if not i.get("indexed")]
        return _EventSpec(
            name=str(event_abi["name"]),
            signature=signature,
            topic0=encode_hex(keccak(text=signature)).lower(),
            indexed=[i for i in inputs if i.get("indexed") is True],
            non_indexed=non_indexed,
            non_indexed_types=[canonical_type(i) for i in non_indexed],
        )

    def _decode_args(self, spec: _EventSpec, topics: Sequence[str], data: str) -> dict[str, Any]:
        out: dict[str, Any] = {}

        for param, topic in zip(spec.indexed, topics, strict=True):
            typ = canonical_type(param)
            raw = decode_hex(topic)
            if len(raw) != 32:
                raise ValueError(f"Expected 32-byte topic, got len={len(raw)}")
            if _is_dynamic(typ):
                # Only the keccak hash of a dynamic indexed value is on chain
                value: Any = encode_hex(raw)
            else:
                (value,) = abi_decode([typ], raw)
                value = self._normalize_abi_value(param, value)
            self._put_named(out, param, value)

        payload = decode_hex(data or "0x")
        if spec.non_indexed:
            values = abi_decode(spec.non_indexed_types, payload)
            for param, val in zip(spec.non_indexed, values, strict=True):
                self._put_named(out, param, self._normalize_abi_value(param, val))

        return out

    @staticmethod
    def _put_named(out: dict[str, Any], param: Mapping[str, Any], value: Any) -> None:
        name = str(param.get("name") or "")
        if not name or _POSITIONAL_NAME_RE.match(name):
            return
        out[name] = value

    # ---------------------------------------------------------------------
    # Value normalization
    # ---------------------------------------------------------------------

    def _normalize_abi_value(self, param: Mapping[str, Any], val: Any) -> Any:
        typ = str(param["type"])

        array = _ARRAY_SUFFIX_RE.match(typ)
        if array:
            element = dict(param, type=array.group(1))
            return [self._normalize_abi_value(element, v) for v in val]

        if typ == "tuple":
            components = param.get("components", [])
            return [self._normalize_abi_value(c, v) for c, v in zip(components, val, strict=True)]

        if typ == "address":
            return to_checksum_address(val)

        if typ == "bool":
            return bool(val)

        match = _INT_TYPE_RE.match(typ)
        if match:
            bits = int(match.group(1) or 256)
            return str(int(val)) if bits >= _WIDE_INT_BITS else int(val)

        if typ.startswith("bytes") or typ == "function":
            return encode_hex(bytes(val))

        # string and anything exotic (fixed-point) pass through as text
        return val if isinstance(val, str) else str(val)
