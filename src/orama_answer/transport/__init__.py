from orama_answer.transport.client import OramaTransport, SecurityLevel, Transport, iter_sse_data

__all__ = ["OramaTransport", "SecurityLevel", "Transport", "iter_sse_data"]
