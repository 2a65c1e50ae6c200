"""Packet capture sources, frame parsing and pcap file handling."""

from __future__ import annotations

import bisect
import dataclasses
import gzip
import os
import struct
import sys
import threading
from dataclasses import dataclass, field
from itertools import cycle
from typing import BinaryIO, Callable, Iterable, Iterator, Optional

from .packet import (
    MAX_CAPTURE_LEN,
    MAXIMUM_SNAPLEN,
    WH_LEN,
    WH_MASK,
    WH_OPCODE,
    WS_OPCODE_TEXT,
    CaptureStorage,
    Frame,
    Packet,
    PacketType,
)
from .reasm import (
    IPPROTO_TCP,
    IPPROTO_UDP,
    Reassembler,
    Validator,
    parse_tcp_header,
    parse_udp_header,
)

PCAP_MAGIC_USEC = 0xA1B2C3D4
PCAP_MAGIC_NSEC = 0xA1B23C4D
_GLOBAL_HEADER_LEN = 24
_RECORD_HEADER_LEN = 16
_GZIP_MAGIC = b"\x1f\x8b"

#: Decides whether a parsed packet is worth keeping
PacketHandler = Callable[[Packet], bool]


def read_pcap(stream: BinaryIO) -> tuple[int, Iterator[Frame]]:
    """Read a pcap stream.

    Returns the link type and an iterator over the frames it holds.
    Raises ValueError when the stream is not a pcap file.
    """
    header = stream.read(_GLOBAL_HEADER_LEN)
    if len(header) < _GLOBAL_HEADER_LEN:
        raise ValueError("truncated pcap file header")
    for order in ("<", ">"):
        (magic,) = struct.unpack(order + "I", header[:4])
        if magic in (PCAP_MAGIC_USEC, PCAP_MAGIC_NSEC):
            break
    else:
        raise ValueError("unknown file format")
    nanoseconds = magic == PCAP_MAGIC_NSEC
    *_, link = struct.unpack(order + "HHiIII", header[4:])

    def frames() -> Iterator[Frame]:
        while True:
            record = stream.read(_RECORD_HEADER_LEN)
            if len(record) < _RECORD_HEADER_LEN:
                return
            sec, fraction, incl_len, orig_len = struct.unpack(order + "IIII", record)
            data = stream.read(incl_len)
            if len(data) < incl_len:
                return
            usec = fraction // 1000 if nanoseconds else fraction
            yield Frame(data, sec, usec, orig_len)

    return link & 0xFFFF, frames()


class PcapWriter:
    """Writes packet frames to a stream in pcap format."""

    def __init__(self, stream: BinaryIO, link: int) -> None:
        self.stream = stream
        self.link = link
        stream.write(
            struct.pack("<IHHiIII", PCAP_MAGIC_USEC, 2, 4, 0, 0, MAXIMUM_SNAPLEN, link)
        )

    def write_packet(self, packet: Packet) -> None:
        """Write every frame of the packet and flush the stream."""
        for frame in packet.frames:
            self.stream.write(
                struct.pack("<IIII", frame.sec, frame.usec, frame.caplen, frame.orig_len)
            )
            self.stream.write(frame.data)
        self.stream.flush()

    def close(self) -> None:
        """Close the underlying stream."""
        self.stream.close()

    def __enter__(self) -> PcapWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def check_websocket(packet: Packet) -> bool:
    """Strip a Websocket text frame header from the packet payload.

    Returns True when the payload was a Websocket frame; the payload is then
    replaced with the (unmasked) frame content and the packet type updated.
    """
    payload = packet.payload
    if not payload or payload[0] & WH_OPCODE != WS_OPCODE_TEXT:
        return False
    if len(payload) < 2:
        return False
    masked = bool(payload[1] & WH_MASK)
    length = payload[1] & WH_LEN
    offset = 2
    if length == 126:
        offset += 2
    elif length == 127:
        offset += 8
    else:
        return False

    mask_key = b""
    if masked:
        mask_key = payload[offset:offset + 4]
        offset += 4

    body = payload[offset:]
    if not body or (masked and len(mask_key) < 4):
        return False
    if masked:
        body = bytes(byte ^ key for byte, key in zip(body, cycle(mask_key)))

    packet.payload = body
    packet.type = PacketType.SIP_WSS if packet.type is PacketType.SIP_TLS else PacketType.SIP_WS
    return True


def insert_sorted_by_time(packets: list[Packet], packet: Packet) -> None:
    """Insert a packet into a time-ordered list, after any of equal time."""
    bisect.insort_right(packets, packet, key=lambda item: item.timestamp())


def is_gz_filename(filename: str) -> bool:
    """Return True if the file name ends in ``.gz``."""
    dot = filename.rfind(".")
    return dot >= 0 and filename[dot:] == ".gz"


@dataclass(eq=False)
class CaptureSource:
    """One source of captured frames: a file or a device."""

    link: int
    frames: Iterable[Frame]
    infile: Optional[str] = None
    device: Optional[str] = None
    stream: Optional[BinaryIO] = None
    running: bool = False
    reassembler: Reassembler = field(init=False)

    def __post_init__(self) -> None:
        self.reassembler = Reassembler(self.link)


class Capture:
    """Collects frames from capture sources and turns them into packets."""

    def __init__(
        self,
        limit: int = 0,
        rtp_capture: bool = False,
        rotate: bool = False,
        storage: CaptureStorage = CaptureStorage.MEMORY,
        handler: Optional[PacketHandler] = None,
    ) -> None:
        self.limit = limit
        self.rtp_capture = rtp_capture
        self.rotate = rotate
        self.storage = storage
        self.handler = handler
        self.paused = False
        self.validator: Optional[Validator] = None
        self.sources: list[CaptureSource] = []
        self.lock = threading.RLock()
        self.accepted = 0
        self.call_counter: Callable[[], int] = lambda: self.accepted
        self._writer: Optional[PcapWriter] = None
        self._dump_path: Optional[str] = None
        self._dump_inode: Optional[int] = None
        self._reopen = threading.Event()
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def add_source(self, source: CaptureSource) -> None:
        """Add a packet source to the capture."""
        if self.validator is not None:
            source.reassembler.validator = self.validator
        self.sources.append(source)

    def open_offline(self, infile: str) -> CaptureSource:
        """Open a pcap file (optionally gzip compressed) as a source.

        ``-`` reads from standard input. Raises OSError when the file cannot
        be opened and ValueError when it is not a usable pcap file.
        """
        owned = infile != "-"
        path = infile if owned else "/dev/stdin"
        raw: BinaryIO = open(path, "rb") if owned else sys.stdin.buffer
        stream: BinaryIO = raw
        if raw.peek(2)[:2] == _GZIP_MAGIC:
            if owned:
                raw.close()
                stream = gzip.open(path, "rb")
            else:
                stream = gzip.GzipFile(fileobj=raw, mode="rb")
        try:
            link, frames = read_pcap(stream)
            source = CaptureSource(link, frames, infile=path, stream=stream if owned else None)
        except ValueError as error:
            if owned:
                stream.close()
            raise ValueError(f"Couldn't open pcap file {infile}: {error}") from error
        self.add_source(source)
        return source

    def parse_frame(self, source: CaptureSource, frame: Frame) -> Optional[Packet]:
        """Parse one frame; return the packet when it was kept, else None."""
        if self.paused:
            return None
        if self.limit and self.call_counter() >= self.limit and not self.rotate:
            return None
        if frame.caplen > MAX_CAPTURE_LEN:
            return None

        result = source.reassembler.reassemble_ip(frame)
        if result is None:
            return None
        packet, segment = result

        try:
            if packet.proto == IPPROTO_UDP:
                udp = parse_udp_header(segment)
                packet.src = dataclasses.replace(packet.src, port=udp.sport)
                packet.dst = dataclasses.replace(packet.dst, port=udp.dport)
                packet.type = PacketType.SIP_UDP
                packet.payload = bytes(segment[udp.header_length:])
            elif packet.proto == IPPROTO_TCP:
                tcp = parse_tcp_header(segment)
                packet.src = dataclasses.replace(packet.src, port=tcp.sport)
                packet.dst = dataclasses.replace(packet.dst, port=tcp.dport)
                payload = bytes(segment[tcp.header_length:])
                packet.type = PacketType.SIP_TCP
                packet.payload = payload
                assembled = source.reassembler.reassemble_tcp(packet, tcp, payload)
                if assembled is None:
                    return None
                packet = assembled
                check_websocket(packet)
            else:
                return None
        except ValueError:
            return None

        with self.lock:
            if not self._accept(packet):
                return None
            self.accepted += 1
            self.dump_packet(packet)
            if self.storage == CaptureStorage.NONE:
                packet.frames = [
                    Frame(b"", item.sec, item.usec, item.orig_len) for item in packet.frames
                ]
            return packet

    def _accept(self, packet: Packet) -> bool:
        if not packet.payload:
            return False
        keep = True if self.handler is None else bool(self.handler(packet))
        if keep and packet.type is PacketType.RTP and not self.rtp_capture:
            return False
        return keep

    def _loop(self, source: CaptureSource) -> None:
        try:
            for frame in source.frames:
                if self._stop.is_set():
                    break
                self.parse_frame(source, frame)
        finally:
            source.running = False

    def run(self) -> None:
        """Start one reading thread for every source not yet running."""
        self._stop.clear()
        for source in self.sources:
            if source.running:
                continue
            source.running = True
            thread = threading.Thread(target=self._loop, args=(source,), daemon=True)
            self._threads.append(thread)
            thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the reading threads to finish."""
        for thread in self._threads:
            thread.join(timeout)

    def status_desc(self) -> str:
        """Return a short text describing the capture state."""
        online = sum(1 for source in self.sources if not source.infile)
        offline = len(self.sources) - online
        loading = sum(1 for source in self.sources if source.infile and source.running)

        if online > 0 and offline == 0:
            mode = "Online"
        elif online == 0 and offline > 0:
            mode = "Offline"
        else:
            mode = "Mixed"

        if self.paused:
            return f"{mode} (Paused)"
        if loading > 0:
            return f"{mode} (Loading)"
        return mode

    def input_file(self) -> Optional[str]:
        """Return the input file name of a single offline source."""
        if len(self.sources) == 1:
            infile = self.sources[0].infile
            return os.path.basename(infile) if infile else None
        return "Multiple files"

    def device(self) -> Optional[str]:
        """Return the capture device of a single source, or ``multi``."""
        if len(self.sources) == 1:
            return self.sources[0].device
        return "multi"

    def is_online(self) -> bool:
        """Return True if no source reads from a file."""
        return not any(source.infile for source in self.sources)

    def is_running(self) -> bool:
        """Return True if any source is still being read."""
        return any(source.running for source in self.sources)

    def request_dump_reopen(self) -> None:
        """Ask for the dump file to be reopened if it was moved away."""
        self._reopen.set()

    def dump_open(self, path: str) -> PcapWriter:
        """Open a dump file where kept packets will be written.

        Only possible with exactly one capture source; raises ValueError
        otherwise. Names ending in ``.gz`` are written gzip compressed.
        """
        if len(self.sources) != 1:
            raise ValueError("dump file requires exactly one capture source")
        source = self.sources[0]
        if is_gz_filename(path):
            stream: BinaryIO = gzip.open(path, "wb")
            inode = os.stat(path).st_ino
        else:
            stream = open(path, "wb+")
            inode = os.fstat(stream.fileno()).st_ino
        writer = PcapWriter(stream, source.link)
        self._writer = writer
        self._dump_path = path
        self._dump_inode = inode
        return writer

    def dump_packet(self, packet: Packet) -> None:
        """Write a packet to the dump file, if one is open."""
        if self._reopen.is_set() and self._writer is not None:
            try:
                changed = os.stat(self._dump_path).st_ino != self._dump_inode
            except OSError:
                changed = True
            if changed:
                self._writer.close()
                self._writer = None
                try:
                    self.dump_open(self._dump_path)
                except (OSError, ValueError):
                    self._writer = None
            self._reopen.clear()
        if self._writer is not None:
            self._writer.write_packet(packet)

    def close(self) -> None:
        """Stop reading threads and close the dump file and sources."""
        if not self.sources:
            return
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        self._stop.set()
        self.join()
        self._threads.clear()
        for source in self.sources:
            if source.stream is not None:
                source.stream.close()
                source.stream = None