"""fpreader version information."""

__version__ = "0.3.1"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: connect, capture, PNG output
# 0.2.0 - Layered transport/command/session split, finger-detect polling,
#         chunked image reads, BMP/TIFF/JPEG output
# 0.3.0 - REST API (connect/disconnect/capture/events), config file overrides
#         for sensor constants, cooperative cancel
# 0.3.1 - Fix LED-off failure masking capture errors, idempotent disconnect
