"""Core wire primitives: bencode and peer/torrent identifiers."""
