# Utils package initialization file
from utils.pricing import PricingPolicy, default_pricing_policy

__all__ = ['PricingPolicy', 'default_pricing_policy']
