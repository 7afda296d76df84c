__title__ = "cloudgraph"
__description__ = "Fetch the resources of an AWS account into a graph."
__version__ = "0.1.0"
__license__ = "Apache 2.0"
