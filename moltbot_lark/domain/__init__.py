"""
Domain layer - value objects, collaborator interfaces and the error taxonomy
"""
