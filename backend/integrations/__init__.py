from .rule_based import RuleBasedAnalyzer, rule_based_analyzer
from .ai_client import InferenceClient, AnalysisService, analysis_service, get_analysis_service
from .mcp import McpHandler
