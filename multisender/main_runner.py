# main_runner.py
import os
import importlib
import questionary
from multisender.config import MODULE_PATH


def load_and_run_module(module_name):
    """
    Import a task module from multisender.modules and run its main function.
    """
    module = importlib.import_module(f"multisender.modules.{module_name}")

    # Run the module's main function if it exists
    if hasattr(module, 'main'):
        module.main()
    else:
        print(f"No main() function found in {module_name}. Skipping...")


def run_selected_module():
    """
    Allow the user to select which task to run from the modules package.
    """
    if os.path.isdir(MODULE_PATH):
        python_files = [f for f in os.listdir(MODULE_PATH) if f.endswith('.py') and not f.startswith('_')]

        if not python_files:
            print("No Python modules found in the specified directory.")
            return

        # Show titles without the .py extension
        choices = [
            questionary.Choice(
                title=f"{idx + 1}. {os.path.splitext(fname)[0]}",
                value=os.path.splitext(fname)[0]
            )
            for idx, fname in enumerate(sorted(python_files))
        ]

        selected = questionary.select(
            "Select the task you want to run:",
            choices=choices
        ).ask()

        if selected:
            try:
                load_and_run_module(selected)
            except Exception as e:
                print(f"Error running {selected}: {e}")
        else:
            print("No module selected.")
    else:
        print(f"The path '{MODULE_PATH}' is not a valid directory.")


if __name__ == "__main__":
    run_selected_module()
