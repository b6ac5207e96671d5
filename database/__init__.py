"""database/ -- Relational schema and the pizza domain store (menu, orders, franchises)."""
