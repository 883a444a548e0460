"""Infrastructure layer: persistence, messaging and factories"""
