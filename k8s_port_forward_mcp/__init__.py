"""MCP server that discovers Kubernetes pods and manages kubectl port-forwards.

Tools exposed to agents:
- list_k8s_namespaces
- list_k8s_services
- start_k8s_port_forward
- stop_k8s_port_forward
- list_k8s_port_forwards
"""

__version__ = "0.1.0"
