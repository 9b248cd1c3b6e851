"""
Infrastructure layer - retry, persistence, configuration, Lark and Moltbot
adapters, scheduling
"""
