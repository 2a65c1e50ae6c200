"""SIP packet capture: pcap reading and writing, IP/TCP reassembly, WebSocket unwrapping and HEP/EEP."""

__version__ = "1.6.0"