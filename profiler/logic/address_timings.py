"""
Address Timings

Per-instruction-address hit counts within one native symbol, as shown in the
assembly view. Same two-step shape as line_timings, keyed by the frame's
native symbol instead of the func's file.

A function inlined into two different outer functions has frames under two
native symbols. Only frames of the queried symbol count, so hits land on the
symbol that actually contains the executed instructions. Address -1 means
the address is unknown; such frames contribute no hits.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..profile_types import FrameTable, FuncTable, SamplesTable, StackTable
from .call_tree import CallNodeInfo, get_matching_ancestor_stack_for_inverted_call_node

UNKNOWN_ADDRESS = -1


@dataclass
class StackAddressInfo:
    self_address: list[Optional[int]]
    stack_addresses: list[Optional[frozenset[int]]]


@dataclass
class AddressTimings:
    total_address_hits: dict[int, float] = field(default_factory=dict)
    self_address_hits: dict[int, float] = field(default_factory=dict)


def _known(address: int) -> Optional[int]:
    return None if address == UNKNOWN_ADDRESS else address


def get_stack_address_info(
    stack_table: StackTable,
    frame_table: FrameTable,
    func_table: FuncTable,
    native_symbol: int,
) -> StackAddressInfo:
    """Addresses of the native symbol hit anywhere on each stack."""
    self_addresses: list[Optional[int]] = []
    stack_addresses: list[Optional[frozenset[int]]] = []

    for stack_index in range(stack_table.length):
        frame = stack_table.frame[stack_index]
        prefix = stack_table.prefix[stack_index]

        self_address = None
        total_addresses = stack_addresses[prefix] if prefix is not None else None
        if frame_table.native_symbol[frame] == native_symbol:
            self_address = _known(frame_table.address[frame])
            if self_address is not None:
                if total_addresses is None:
                    total_addresses = frozenset((self_address,))
                elif self_address not in total_addresses:
                    total_addresses = total_addresses | {self_address}

        self_addresses.append(self_address)
        stack_addresses.append(total_addresses)
    return StackAddressInfo(self_addresses, stack_addresses)


def get_stack_address_info_for_call_node(
    stack_table: StackTable,
    frame_table: FrameTable,
    call_node_index: int,
    call_node_info: CallNodeInfo,
    native_symbol: int,
) -> StackAddressInfo:
    """
    Addresses of the native symbol hit inside one call node only.

    A stack that maps to the call node but whose frame belongs to another
    native symbol does not count; its time was spent in a different copy of
    the inlined code.
    """
    if call_node_info.is_inverted():
        return _get_stack_address_info_for_inverted_call_node(
            stack_table, frame_table, call_node_index, call_node_info, native_symbol
        )

    stack_to_call_node = call_node_info.stack_index_to_call_node_index
    self_addresses: list[Optional[int]] = []
    stack_addresses: list[Optional[frozenset[int]]] = []
    for stack_index in range(stack_table.length):
        frame = stack_table.frame[stack_index]
        self_address = None
        total_addresses = None
        if (stack_to_call_node[stack_index] == call_node_index
                and frame_table.native_symbol[frame] == native_symbol):
            self_address = _known(frame_table.address[frame])
            if self_address is not None:
                total_addresses = frozenset((self_address,))
        else:
            prefix = stack_table.prefix[stack_index]
            total_addresses = stack_addresses[prefix] if prefix is not None else None
        self_addresses.append(self_address)
        stack_addresses.append(total_addresses)
    return StackAddressInfo(self_addresses, stack_addresses)


def _get_stack_address_info_for_inverted_call_node(
    stack_table: StackTable,
    frame_table: FrameTable,
    call_node_index: int,
    call_node_info: CallNodeInfo,
    native_symbol: int,
) -> StackAddressInfo:
    is_root = call_node_info.is_root(call_node_index)
    inverted_path = call_node_info.get_call_node_path(call_node_index)
    self_addresses: list[Optional[int]] = []
    stack_addresses: list[Optional[frozenset[int]]] = []

    for stack_index in range(stack_table.length):
        self_address = None
        total_addresses = None
        stack_for_call_node = get_matching_ancestor_stack_for_inverted_call_node(
            stack_table, frame_table, stack_index, inverted_path
        )
        if stack_for_call_node is not None:
            frame = stack_table.frame[stack_for_call_node]
            address = _known(frame_table.address[frame])
            if frame_table.native_symbol[frame] == native_symbol and address is not None:
                total_addresses = frozenset((address,))
                if is_root:
                    self_address = address
        self_addresses.append(self_address)
        stack_addresses.append(total_addresses)
    return StackAddressInfo(self_addresses, stack_addresses)


def get_address_timings(stack_address_info: Optional[StackAddressInfo], samples: SamplesTable) -> AddressTimings:
    timings = AddressTimings()
    if stack_address_info is None:
        return timings
    total_hits = timings.total_address_hits
    self_hits = timings.self_address_hits

    for sample_index, stack in enumerate(samples.stack):
        if stack is None:
            continue
        weight = samples.weight_for(sample_index)
        addresses = stack_address_info.stack_addresses[stack]
        if addresses is not None:
            for address in addresses:
                total_hits[address] = total_hits.get(address, 0) + weight
        self_address = stack_address_info.self_address[stack]
        if self_address is not None:
            self_hits[self_address] = self_hits.get(self_address, 0) + weight
    return timings
