"""
Polygon Projection Example

Projects a two-species interior lodgepole pine / Douglas-fir stand forward
twenty years with the packaged coefficients and prints a yield table for
the layer and each species.

Usage:
    python examples/project_polygon.py
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pyvdyp import (
    ForwardControlVariables,
    ForwardProcessingEngine,
    GrowthTrajectory,
    Layer,
    LayerType,
    Polygon,
    Species,
    SpeciesDistribution,
    UtilizationVector,
    load_coefficient_tables,
    load_site_curves,
    setup_logging,
)

console = Console()


def build_polygon() -> Polygon:
    """A 70% lodgepole pine / 30% Douglas-fir stand in the IDF zone."""
    pine = Species(
        genus='PL',
        percent_genus=70.0,
        distributions=[SpeciesDistribution('PLI')],
        site_index=18.0,
        age_total=60.0,
        years_to_breast_height=8.0,
        dominant_height=18.4,
        basal_area=UtilizationVector.of(0.3, 21.0, 5.0, 6.5, 5.5, 4.0),
        trees_per_hectare=UtilizationVector.of(106.1, 1261.0, 636.6, 367.8, 175.1, 81.5),
        quad_mean_diameter=UtilizationVector.of(6.0, 14.56, 10.0, 15.0, 20.0, 25.0),
        lorey_height=UtilizationVector.of(6.0, 16.0, 12.0, 15.5, 17.5, 19.0),
        whole_stem_volume=UtilizationVector.of(0.8, 151.0, 30.0, 45.0, 42.0, 34.0),
        close_utilization_volume=UtilizationVector.of(0.0, 128.0, 20.0, 38.0, 38.0, 32.0),
        cu_volume_minus_decay=UtilizationVector.of(0.0, 121.0, 19.0, 36.0, 36.0, 30.0),
        cu_volume_minus_decay_and_waste=UtilizationVector.of(0.0, 117.5, 18.5, 35.0, 35.0, 29.0),
        cu_volume_minus_decay_waste_and_breakage=UtilizationVector.of(
            0.0, 114.0, 18.0, 34.0, 34.0, 28.0
        ),
    )
    fir = Species(
        genus='F',
        percent_genus=30.0,
        distributions=[SpeciesDistribution('FDI')],
        age_total=65.0,
        basal_area=UtilizationVector.of(0.2, 9.0, 2.0, 3.0, 2.5, 1.5),
        trees_per_hectare=UtilizationVector.of(84.2, 528.4, 254.7, 169.8, 75.7, 28.3),
        quad_mean_diameter=UtilizationVector.of(5.5, 14.73, 10.0, 15.0, 20.5, 26.0),
        lorey_height=UtilizationVector.of(5.0, 15.0, 11.5, 14.5, 16.5, 18.0),
        whole_stem_volume=UtilizationVector.of(0.4, 67.0, 12.0, 21.0, 20.0, 14.0),
        close_utilization_volume=UtilizationVector.of(0.0, 56.0, 8.0, 17.0, 18.0, 13.0),
        cu_volume_minus_decay=UtilizationVector.of(0.0, 52.5, 7.5, 16.0, 17.0, 12.0),
        cu_volume_minus_decay_and_waste=UtilizationVector.of(0.0, 50.9, 7.3, 15.5, 16.5, 11.6),
        cu_volume_minus_decay_waste_and_breakage=UtilizationVector.of(
            0.0, 49.3, 7.1, 15.0, 16.0, 11.2
        ),
    )
    return Polygon(
        identifier='01002 S000001 00',
        year=2013,
        bec_zone='IDF',
        layers={LayerType.PRIMARY: Layer(LayerType.PRIMARY, [pine, fir])},
    )


def print_layer_table(trajectory: GrowthTrajectory):
    """Print the layer totals for every projected year."""
    totals = trajectory.layer_totals()

    table = Table(title="Primary Layer (utilization 7.5 cm+)")
    table.add_column("Year", justify="center")
    table.add_column("BA (m2/ha)", justify="right")
    table.add_column("TPH", justify="right")
    table.add_column("DQ (cm)", justify="right")
    table.add_column("Lorey Ht (m)", justify="right")
    table.add_column("WS Vol (m3/ha)", justify="right")
    table.add_column("Net Vol (m3/ha)", justify="right")

    for (_, year), row in totals.iterrows():
        table.add_row(
            str(year),
            f"{row['basal_area']:.2f}",
            f"{row['trees_per_hectare']:.0f}",
            f"{row['quad_mean_diameter']:.2f}",
            f"{row['lorey_height']:.2f}",
            f"{row['whole_stem_volume']:.1f}",
            f"{row['cu_volume_minus_decay_waste_and_breakage']:.1f}",
        )
    console.print(table)


def print_species_table(trajectory: GrowthTrajectory):
    """Print each species' values in the last projected year."""
    df = trajectory.to_dataframe()
    last = df[(df['year'] == df['year'].max()) & (df['species_index'] > 0)
              & (df['utilization_class'] == 'ALL')]

    table = Table(title=f"Species in {int(df['year'].max())}")
    table.add_column("Genus", style="bold")
    table.add_column("% of layer", justify="right")
    table.add_column("Age", justify="right")
    table.add_column("BA (m2/ha)", justify="right")
    table.add_column("DQ (cm)", justify="right")
    table.add_column("CU Vol (m3/ha)", justify="right")

    for _, row in last.iterrows():
        table.add_row(
            row['genus'],
            f"{row['percent_forested']:.1f}",
            f"{row['age_total']:.0f}",
            f"{row['basal_area']:.2f}",
            f"{row['quad_mean_diameter']:.2f}",
            f"{row['close_utilization_volume']:.1f}",
        )
    console.print(table)


def main():
    setup_logging(level='WARNING')

    console.print(Panel("[bold]pyvdyp forward projection[/bold]"))
    engine = ForwardProcessingEngine(
        load_coefficient_tables(),
        load_site_curves(),
        ForwardControlVariables(grow_target=20),
    )

    trajectory = GrowthTrajectory()
    state = engine.process_polygon(build_polygon(), sink=trajectory)

    details = state.primary_details
    console.print(
        f"Primary species [bold]{state.primary_genus}[/bold], "
        f"ITG {state.ranking.inventory_type_group}, "
        f"dominant height {details.dominant_height:.2f} m at age {details.total_age:.0f}"
    )
    console.print()
    print_layer_table(trajectory)
    console.print()
    print_species_table(trajectory)


if __name__ == "__main__":
    main()
