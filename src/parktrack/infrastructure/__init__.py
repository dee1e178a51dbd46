"""Infrastructure layer: session store adapters and in-process event publishing"""
