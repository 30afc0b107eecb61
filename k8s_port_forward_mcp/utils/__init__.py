"""Port-forward MCP utilities.

Business-logic helpers grouped by area:
- `services`: pod listing parser + short-name resolution
- `ports`: remote port detection
- `cluster`: cluster query backends (kubectl CLI or Kubernetes API)
- `commands`: kubectl argv builders
- `validation`: start request normalisation
- `supervisor`: port-forward process lifecycle
- `terminal`: log windows
- `forwarding`: the tool-level operations tying the above together
- `formatting`: text/json/yaml rendering of tool results
"""

__all__ = [
	"clients",
	"cluster",
	"commands",
	"formatting",
	"forwarding",
	"models",
	"ports",
	"services",
	"supervisor",
	"terminal",
	"validation",
]
