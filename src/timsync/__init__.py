"""timsync: compile authored markdown projects into TIM document trees."""

__version__ = "0.3.0"
