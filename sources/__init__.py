from sources.base import BaseSource, RecordBuffer
from sources.oracle import OracleLogMinerSource

__all__ = ["BaseSource", "RecordBuffer", "OracleLogMinerSource"]
