from feydar.database.deployment_db import DeploymentDatabase, WriteOperation
