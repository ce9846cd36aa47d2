# zscan

Building blocks for a single-packet network scanner, in plain Python with no
third-party dependencies.

## What is inside

### `zscan.filter` — output filter validation

A filter expression is a tree of `FilterNode`s. Each node has a `NodeType`
(`OP`, `FIELD`, `STRING`, `INT`); operator nodes carry an `Operator`
(`GT`, `LT`, `EQ`, `NEQ`, `LT_EQ`, `GT_EQ`, `AND`, `OR`) and `left`/`right`
children, field nodes carry `field_name`, and literal nodes carry `value`.

`validate_filter(root, fields)` walks the tree and checks every comparison
against a sequence of `FieldDef(name, type, desc="")`:

- the field on the left must exist, otherwise `FilterValidationError`
  (`Field '...' does not exist`);
- a string literal may only be compared with a field of type `"string"`;
- an integer literal may only be compared with a field of type `"int"` or
  `"bool"`.

On success it returns `True` and sets `field_index` on each field node to the
position of the matching `FieldDef`. `AND`/`OR` nodes are checked through
their children; an empty tree (`None`) is valid.

### `zscan.iterator` — send threads and their counters

`Iterator(num_threads, send_state=None, num_addrs=0, shard=0, num_shards=1,
clock=time.time)` keeps one `ShardState` per sending thread (packets sent,
hosts scanned, blocklisted/allowlisted hosts, failures, iterations,
first address scanned) and a shared `SendState`. On construction it sets
`SendState.max_index` to the number of addresses, capped at `0xFFFFFFFF`.

- `get_shard(thread_id)` returns a thread's `ShardState`
  (`IndexError` for an unknown thread).
- `shard_complete(thread_id)` adds that shard's counters to the `SendState`
  under a lock; when every thread has completed it records the finish time,
  marks the state complete and copies the first scanned address of shard 0.
- `total_sent()`, `total_iterations()`, `total_failures()` sum over all
  shards; `current_send_threads()` counts threads not yet complete.

### `zscan.gateway` — default gateway and interface discovery (Linux)

- `get_default_gateway()` dumps the routing table over a netlink socket and
  returns `(gateway_ip, interface_name)` for the first IPv4 route in the main
  table that has a gateway.
- `check_default_gateway(iface)` returns the gateway, raising `GatewayError`
  if it is not reached through `iface`.
- `get_hw_addr(gateway_ip, iface)` reads the neighbour table and returns the
  gateway's 6-byte hardware address.
- `get_default_iface()` returns the first interface whose name is not a
  loopback (`lo`, `lo0`, ...).
- `get_iface_ip(iface)` and `get_iface_hw_addr(iface)` use interface ioctls;
  the latter returns six zero bytes when the interface has no hardware
  address.

The parsers work on raw bytes and need no socket:
`parse_netlink_messages(data)` yields `(type, flags, payload)` per message,
`parse_default_gateway(data)` returns `(gateway_ip, oif_index_or_None)`, and
`parse_neighbor_mac(data, gateway_ip)` returns the matching MAC. A hardware
address that is not 6 bytes or a destination that is not 4 bytes raises
`GatewayError` with a hint to use `--iplayer` when on a VPN. All failures are
raised as `GatewayError`.

### `zscan.monitor` — progress monitoring

`Monitor(iterator, config=None, recv_state=None, stream=None,
status_file=None, clock=time.time, update_stats=None, lock=None)` reads the
iterator's shards, its `SendState`, a `ReceiveState` (pcap received, filter
successes, unique application successes, pcap and interface drops) and a
`MonitorConfig`.

- `export_stats(current_time=None)` returns an `ExportStatus` snapshot:
  elapsed and remaining time, percent complete, send/receive/drop/failure
  rates per interval and on average, hit rate and application hit rate.
- `compute_remaining_time(...)` estimates the seconds left as the smallest
  estimate from the address list, `max_targets`, `max_runtime`,
  `max_results` and `max_index` limits; once sending is complete it is the
  cooldown left.
- `drop_warnings(status)` logs and returns warnings when drops exceed 5% of
  the receive rate or failures exceed 1% of the send rate.
- `check_limits(status)` raises `MonitorAbort` when the hit rate has been
  below `min_hitrate` for 5 seconds after warm-up, or when send failures
  exceed `max_sendto_failures` (negative means no limit).
- `format_status_line(status)` renders the one-line on-screen report, with
  application success figures when `app_success_index >= 0`.
- `status_csv_row(status, timestamp)` renders one line of the status CSV,
  whose header is `STATUS_CSV_HEADER`. The header is written when a
  `status_file` is passed or `status_updates_file` is set in the config.
- `run(sleep=time.sleep)` repeats the above every second until sending and
  receiving are both complete, writing to `stream` (standard error by
  default) unless `quiet` is set.

## Example

```python
import io

from zscan.filter import FieldDef, FilterNode, NodeType, Operator, validate_filter
from zscan.iterator import Iterator
from zscan.monitor import Monitor, MonitorConfig, ReceiveState

fields = [FieldDef("saddr", "string"), FieldDef("success", "bool")]
tree = FilterNode(
    NodeType.OP,
    op=Operator.EQ,
    left=FilterNode(NodeType.FIELD, field_name="success"),
    right=FilterNode(NodeType.INT, value=1),
)
validate_filter(tree, fields)      # True; tree.left.field_index == 1

it = Iterator(2, num_addrs=1000)
it.get_shard(0).packets_sent = 300
monitor = Monitor(
    it,
    MonitorConfig(),
    ReceiveState(filter_success=30),
    stream=io.StringIO(),
    clock=lambda: 10.0,
)
status = monitor.export_stats()
print(monitor.format_status_line(status))
```

## What this package does not do

It has no command-line program, does not build or send probe packets, and
does not capture responses. It has no parser for filter strings: filter
trees are built from `FilterNode`s directly. It has no modules that write
scan results to CSV, JSON or Redis.

## Requirements

Python 3.10 or newer. `zscan.gateway` needs Linux netlink sockets and
interface ioctls; everything else is platform independent.