"""Runtime: tool execution, the tool loop and observability."""
