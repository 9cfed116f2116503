# Overview: The permission catalog. Codes are grouped by the area of the POS they unlock.

# code -> (group, what holding it allows)
PERMISSIONS = {
    "VIEW_INVENTORY": ("inventory", "View products and stock on hand"),
    "MANAGE_PRODUCTS": ("inventory", "Create products and edit names, categories and prices"),
    "RECEIVE_STOCK": ("inventory", "Record incoming stock for a branch"),
    "PROCESS_SALE": ("sales", "Complete checkouts at the POS terminal"),
    "VIEW_SALES": ("sales", "View recorded sales within the caller's scope"),
    "VIEW_REPORTS": ("reports", "View revenue, best sellers and daily trends"),
    "VIEW_COGS": ("reports", "View cost of goods sold and gross profit"),
    "VIEW_STAFF": ("staff", "View staff members"),
    "MANAGE_STAFF": ("staff", "Create, reassign and deactivate staff members"),
    "VIEW_BRANCHES": ("business", "View branch locations and their status"),
    "MANAGE_BRANCHES": ("business", "Create and rename branch locations"),
    "CHANGE_BRANCH_STATUS": ("business", "Deactivate or reactivate a branch"),
    "MANAGE_BUSINESS": ("business", "Edit business settings such as tax and currency"),
}
