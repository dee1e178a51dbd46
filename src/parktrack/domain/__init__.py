"""Domain layer: value objects, entities, pricing strategies and the error taxonomy"""
