# Models package
from dockyard.models.project import Project, ProjectFile
from dockyard.models.deployment import Deployment
