"""Operator prompts: free text, secrets and numbered selection menus."""
import getpass
import logging

LOG = logging.getLogger(__name__)


def user_input(text):
    """Wrap input() for easier testing."""
    return input(text).strip()


def user_password(text):
    """Wrap getpass() for easier testing."""
    return getpass.getpass(text)


def selector_menu(items, title):
    """Present a numbered menu and block until a valid index is chosen.

    Args:
    items: list of strings to choose from
    title: line printed above the menu

    Returns: index of the chosen item
    """
    selection = -1
    while selection < 0 or selection >= len(items):
        print_selector_table(items, title)
        try:
            selection = int(user_input("Selection: "))
        except ValueError:
            LOG.warning("Invalid selection, please try again")
            continue
    print("")
    return selection


def print_selector_table(items, title):
    """Print the menu lines, each prefixed by its selection index."""
    selector_width = len(str(len(items) - 1)) + 2
    print(f"\n{title}")
    for index, item in enumerate(items):
        sel = f"[{index}]".ljust(selector_width)
        print(f"{sel} {item}")
