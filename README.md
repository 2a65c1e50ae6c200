# sngcap

`sngcap` is a library for capturing SIP traffic from pcap files. It reads
pcap streams, plain or gzip compressed. It rebuilds IP packets from fragments
and joins TCP segments into messages. It strips WebSocket text frame headers
and writes kept packets back to pcap. It can also encode, decode, send and
receive packets wrapped in HEP/EEP, versions 2 and 3.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install .[test]
```

## Modules

### `sngcap.address`

- `Address(ip, port)` is a frozen dataclass. Two addresses are equal only when
  both IP and port match. `Address.same_host(other)` compares the IP alone.
  `str(address)` gives `ip:port`.
- `parse_address("10.0.0.1:5060")` returns an `Address`. It raises `ValueError`
  when the text is not `IP:PORT`.
- `is_local_address(address)` returns `True` if the IP belongs to one of this
  machine's network interfaces. It uses `psutil` to look them up.

### `sngcap.theme`

- `ColorPair` is an `IntEnum` of colour pair identifiers. `COLOR_DEFAULT` (-1)
  stands for the terminal's default colour.

### `sngcap.packet`

- `Frame(data, sec, usec, orig_len)` holds one captured frame. `orig_len`
  defaults to the length of `data`, and `caplen` is the length of `data`.
- `Packet` holds a packet built from one or more frames: IP version, protocol,
  source and destination `Address`, frames, `type` and `payload`. Its methods
  are `add_frame`, `clone` (the copy gets its own frame list) and `timestamp()`.
  `timestamp()` returns the first frame's `(sec, usec)` and raises `ValueError`
  when the packet has no frames.
- `LinkType`, `PacketType` and `CaptureStorage` are enums.
- `datalink_size(link)` gives the link-layer header size. It raises
  `ValueError` for link types it does not handle.

### `sngcap.reasm`

- `Reassembler(link, validator=None)` works on the frames of one link type.
  - `reassemble_ip(frame)` returns `(packet, segment)` in two cases: the frame
    is not fragmented, or it completes a fragmented IPv4 or IPv6 packet.
    Otherwise it returns `None`. It skips 802.1Q VLAN tags, NFLOG TLVs and
    IP-in-IP outer headers. Assembled packets larger than `MAX_CAPTURE_LEN`
    (20480 bytes) are dropped.
  - `reassemble_tcp(packet, tcp, payload)` joins segments with the same source
    and destination. It then asks the validator whether the payload holds a
    SIP message and returns the packet when it does.
- The validator is a callable that takes a packet and returns a `Validation`.
  On `MULTIPLE_SIP` it must trim the payload to the first message; the rest is
  kept for the next segment. On `NOT_SIP` the data is released when a segment
  has the PSH flag. Without a validator, every payload counts as a complete
  SIP message.
- `parse_tcp_header(data)` and `parse_udp_header(data)` return `TcpHeader` and
  `UdpHeader` values. They raise `ValueError` on truncated data.

### `sngcap.capture`

- `read_pcap(stream)` returns `(link_type, frames)` for a pcap stream. It
  accepts either byte order and microsecond or nanosecond timestamps.
- `PcapWriter(stream, link)` writes a pcap header. Its `write_packet(packet)`
  writes the packet's frames and flushes the stream; `close()` closes the
  stream. It can also be used as a context manager.
- `check_websocket(packet)` strips a WebSocket text frame header (extended
  length only) from the payload and unmasks it. The type becomes `SIP_WS`, or
  `SIP_WSS` for `SIP_TLS` packets.
- `insert_sorted_by_time(packets, packet)` inserts into a time-ordered list.
  A packet goes after any packet with the same timestamp.
- `is_gz_filename(name)` tells whether a name ends in `.gz`.
- `Capture(limit, rtp_capture, rotate, storage, handler)` manages capture
  sources:
  - `open_offline(path)` opens a pcap file, gzip compressed or not, as a
    `CaptureSource`. A path of `-` reads standard input.
  - `add_source(source)` adds a source you built yourself.
  - `parse_frame(source, frame)` turns a frame into a UDP or TCP packet and
    returns it when it is kept. A packet is kept when it has a payload and
    `handler(packet)` is true; with no handler every such packet is kept. A
    packet the handler marks as `PacketType.RTP` is kept only with
    `rtp_capture`. With `limit` set and `rotate` false, frames are skipped
    once `call_counter()` reaches the limit; by default that counts kept
    packets. With `storage=CaptureStorage.NONE`, kept packets lose their
    frame data once they have been dumped.
  - `run()` starts one reading thread per source; `join()` waits for them.
  - `status_desc()`, `input_file()`, `device()`, `is_online()` and
    `is_running()` report on the sources.
  - `dump_open(path)` writes kept packets to a pcap file, gzip compressed for
    `.gz` names. It needs exactly one source. `dump_packet(packet)` writes one
    packet. After `request_dump_reopen()`, the dump file is reopened if it was
    moved away.
  - `close()` stops the threads and closes the dump file and the source files.
  - Set `capture.validator` before adding sources to give their reassemblers
    a SIP validator.

### `sngcap.hep` and `sngcap.hep_decode`

- `encode_hep2(packet, capture_id)` and `encode_hep3(packet, capture_id, password)`
  build HEP packets. HEPv3 adds an auth key chunk when a password is given.
- `decode_hep2(data)` and `decode_hep3(data, password)` rebuild a `Packet`
  with a synthetic Ethernet/IPv4/UDP frame, made by `build_frame`. When a
  password is given, `decode_hep3` requires an auth key that starts with it.
- Errors are raised as `HepError`. `ChunkType` lists the HEPv3 chunk types.

### `sngcap.eep`

- `parse_eep_url("udp:10.10.0.100:9060")` returns `("10.10.0.100", "9060")`.
- `EepClient(host, port, version, capture_id, password)` sends packets over
  UDP with `send(packet)`. RTP packets are not sent, and `send` returns
  `False` for them.
- `EepServer(host, port, version, password)` binds a UDP socket.
  - `receive()` decodes one datagram.
  - Iterating over the server yields packets, skips invalid datagrams and
    stops when the socket is closed.
  - `address` is the bound local address.
- Both classes have `close()` and work as context managers.

## Example

```python
from sngcap.capture import Capture
from sngcap.packet import CaptureStorage

def on_packet(packet):
    print(packet.src, "->", packet.dst, len(packet.payload))
    return True  # keep it

capture = Capture(limit=0, rtp_capture=False, rotate=False,
                  storage=CaptureStorage.MEMORY, handler=on_packet)
capture.open_offline("calls.pcap")
capture.run()
capture.join()
print(capture.status_desc())   # "Offline"
capture.close()
```

## What it does not do

- It does not capture from live network devices. Frames come from pcap files,
  standard input or sources you build yourself.
- It does not parse SIP messages or group them into calls. Deciding what is
  SIP, and what counts as a call for `limit`, is left to your handler,
  validator and `call_counter`.
- It does not detect RTP streams or decrypt TLS.
- It has no command-line program and no terminal interface; `sngcap.theme`
  only defines colour identifiers.

## Running the tests

```
pytest
```