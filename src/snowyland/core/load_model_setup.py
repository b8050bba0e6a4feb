"""
Module containing the ModelSetup class, used to load in and hold the
configuration of a benchmark run.

A model setup script is an optional Python file that assigns any of the names
in ``snowyland.core.configuration.DEFAULTS``. It is checked before it is
imported: only whitelisted imports are allowed, and only known setup names
may be assigned at the top level.
"""

import ast
import importlib.util
from snowyland.core.configuration import DEFAULTS
from snowyland.core.errors import ConfigurationError

# List of safe imports that are allowed in a model setup script.
SAFE_IMPORTS = {
    "snowyland",
    "numpy",
    "math",
    "datetime",
}
MODULE_NAME = "snowyland.core.load_model_setup"


class ModelSetup:
    """
    Holds the setup values of a run. Without a script, it starts empty and
    ``create_defaults_for_missing_flags`` fills in every value.

    Parameters
    ----------
    script_path : str, optional
        Path to a model setup script.
    """

    def __init__(self, script_path=None):
        self.errors = []
        self.script_path = script_path
        if script_path is None:
            return
        print(f"Loading model setup from {self.script_path}")
        # Run validation checks before we use importlib to load it in.
        self.validate_model_setup()
        spec = importlib.util.spec_from_file_location("model_setup", self.script_path)
        config_module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(config_module)

        for var_name in DEFAULTS:
            if hasattr(config_module, var_name):
                setattr(self, var_name, getattr(config_module, var_name))

    def validate_model_setup(self):
        """
        Run the validation checks. If any of them fail, raise with all the
        errors found.
        """
        method_name = f"{MODULE_NAME}.ModelSetup.validate_model_setup"
        if self.check_file_exists():
            tree = self.parse()
            if tree is not None:
                self.check_for_unknown_variables(tree)
                self.check_for_unexpected_imports(tree)
        if self.errors:
            error_message = "\n".join(self.errors)
            raise ConfigurationError(
                f"{method_name}: Errors found in model setup:\n{error_message}"
            )

    def check_file_exists(self):
        method_name = f"{MODULE_NAME}.ModelSetup.check_file_exists"
        try:
            with open(self.script_path, "r", encoding="utf-8") as file:
                file.read()
        except FileNotFoundError:
            self.errors.append(
                f"{method_name}: Path to model setup script ({self.script_path})"
                " not found. Pass the -i flag with a valid script path, or omit"
                " it to run with the default setup."
            )
            return False
        return True

    def parse(self):
        method_name = f"{MODULE_NAME}.ModelSetup.parse"
        with open(self.script_path, "r", encoding="utf-8") as f:
            source = f.read()
        try:
            return ast.parse(source, filename=self.script_path)
        except SyntaxError as error:
            self.errors.append(f"{method_name}: {self.script_path} is not valid Python: {error}")
            return None

    def check_for_unknown_variables(self, tree):
        """
        Only setup names (plus private helpers starting with an underscore)
        may be assigned at the top level of the script, so that a misspelt
        name is reported rather than silently ignored.
        """
        method_name = f"{MODULE_NAME}.ModelSetup.check_for_unknown_variables"
        unknown = []
        for node in tree.body:
            if isinstance(node, ast.Assign):
                targets = node.targets
            elif isinstance(node, (ast.AnnAssign, ast.AugAssign)):
                targets = [node.target]
            else:
                continue
            for target in targets:
                if isinstance(target, ast.Name):
                    if target.id not in DEFAULTS and not target.id.startswith("_"):
                        unknown.append(target.id)
        if unknown:
            self.errors.append(
                f"{method_name}: The following variables in {self.script_path}"
                f" are not model setup names: {', '.join(sorted(set(unknown)))}."
                f" Valid names are: {', '.join(DEFAULTS)}."
            )

    def check_for_unexpected_imports(self, tree):
        """
        Only the imports in SAFE_IMPORTS are allowed in a model setup script,
        so modules like "os" and "sys" cannot be used from one.
        """
        method_name = f"{MODULE_NAME}.ModelSetup.check_for_unexpected_imports"
        flag = False
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for node_name in node.names:
                    # look at just the top-level module
                    if node_name.name.split(".")[0] not in SAFE_IMPORTS:
                        flag = True
                        self.errors.append(
                            f"{method_name}: Unsafe import '{node_name.name}'"
                            f" found in model setup script {self.script_path}."
                        )
            elif isinstance(node, ast.ImportFrom):
                parent_name = node.module.split(".")[0] if node.module else ""
                if parent_name not in SAFE_IMPORTS:
                    self.errors.append(
                        f"{method_name}: Unsafe import from '{node.module}' found."
                    )
                    flag = True
        if flag:
            self.errors.append(
                f"Only the following imports are allowed: {', '.join(sorted(SAFE_IMPORTS))}."
            )


def get_model_setup(model_setup_path=None):
    """
    Load in the model setup from the specified path (or the defaults if no
    path is given), and return an instance of the ModelSetup class.
    """
    return ModelSetup(model_setup_path)
