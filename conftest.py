pytest_plugins = ("minicluster.pytest_plugins.minicluster_fixtures",)
