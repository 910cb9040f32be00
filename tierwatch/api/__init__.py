from .agents import AgentsClient, AgentInfo, Holding, calculate_holdings_value

__all__ = ["AgentsClient", "AgentInfo", "Holding", "calculate_holdings_value"]
