"""Client for the KotaDB code-intelligence subprocess."""
from .mcp_client import KotaMcpClient, RpcResponse, StdioTarget, to_text_content

__all__ = ["KotaMcpClient", "RpcResponse", "StdioTarget", "to_text_content"]
