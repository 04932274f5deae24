"""
Sample metadata documents shared by the test modules.
"""

V4_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx" Version="4.0">
  <edmx:DataServices>
    <Schema xmlns="http://docs.oasis-open.org/odata/ns/edm" Namespace="Demo" Alias="D">
      <EntityType Name="Product">
        <Property Name="ProductID" Type="Edm.Int32" Nullable="false"/>
        <Key>
          <PropertyRef Name="ProductID"/>
        </Key>
        <Property Name="Name" Type="Edm.String" Nullable="false" MaxLength="100"/>
        <Property Name="Description" Type="Edm.String" MaxLength="Max"/>
        <Property Name="Price" Type="Edm.Decimal" Precision="10" Scale="2"/>
        <Property Name="Rating" Type="Edm.Double" Scale="Variable"/>
        <Property Name="ReleaseDate" Type="Edm.DateTimeOffset"/>
        <Property Name="Discontinued" Type="Edm.Boolean" Nullable="false" DefaultValue="false"/>
        <NavigationProperty Name="Category" Type="Demo.Category" Partner="Products"/>
        <NavigationProperty Name="Supplier" Type="Demo.Supplier" Nullable="false"/>
      </EntityType>
      <EntityType Name="Category">
        <Key>
          <PropertyRef Name="CategoryID"/>
        </Key>
        <Property Name="CategoryID" Type="Edm.Int32" Nullable="false"/>
        <Property Name="Name" Type="Edm.String"/>
        <NavigationProperty Name="Products" Type="Collection(Demo.Product)" Partner="Category"/>
      </EntityType>
      <EntityType Name="Supplier">
        <Key>
          <PropertyRef Name="SupplierID"/>
        </Key>
        <Property Name="SupplierID" Type="Edm.Guid" Nullable="false"/>
        <Property Name="CompanyName" Type="Edm.String" Nullable="false">
          <Annotation Term="Core.Description" String="Registered company name"/>
        </Property>
        <Property Name="Address" Type="D.Address"/>
      </EntityType>
      <EntityType Name="OrderLine">
        <Key>
          <PropertyRef Name="OrderID"/>
          <PropertyRef Name="LineNo"/>
        </Key>
        <Property Name="LineNo" Type="Edm.Int32" Nullable="false"/>
        <Property Name="OrderID" Type="Edm.String" Nullable="false"/>
        <Property Name="Quantity" Type="Edm.Int16"/>
      </EntityType>
      <ComplexType Name="Address">
        <Property Name="Street" Type="Edm.String"/>
        <Property Name="City" Type="Edm.String" Nullable="false"/>
      </ComplexType>
      <Function Name="TopProducts">
        <Parameter Name="count" Type="Edm.Int32" Nullable="false"/>
        <ReturnType Type="Collection(Demo.Product)"/>
      </Function>
      <Action Name="ResetPrices">
        <Parameter Name="factor" Type="Edm.Decimal"/>
      </Action>
      <EntityContainer Name="Container">
        <EntitySet Name="Products" EntityType="Demo.Product">
          <NavigationPropertyBinding Path="Category" Target="Categories"/>
          <NavigationPropertyBinding Path="Supplier" Target="Suppliers"/>
        </EntitySet>
        <EntitySet Name="Categories" EntityType="D.Category">
          <NavigationPropertyBinding Path="Products" Target="Products"/>
        </EntitySet>
        <EntitySet Name="Suppliers" EntityType="Demo.Supplier"/>
        <EntitySet Name="OrderLines" EntityType="Demo.OrderLine"/>
        <Singleton Name="Me" Type="Demo.Supplier"/>
        <FunctionImport Name="TopProducts" Function="Demo.TopProducts" EntitySet="Products"/>
        <ActionImport Name="ResetPrices" Action="Demo.ResetPrices"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

V2_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx"
           xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"
           xmlns:sap="http://www.sap.com/Protocols/SAPData">
  <edmx:DataServices m:DataServiceVersion="2.0">
    <Schema Namespace="NorthwindModel" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="Customer" sap:label="Customer master">
        <Key>
          <PropertyRef Name="CustomerID"/>
        </Key>
        <Property Name="CustomerID" Type="Edm.String" Nullable="false" MaxLength="5"/>
        <Property Name="CompanyName" Type="Edm.String" Nullable="false" MaxLength="40" sap:label="Company"/>
        <Property Name="Balance" Type="Edm.Decimal" Precision="19" Scale="4"/>
        <NavigationProperty Name="Orders" Relationship="NorthwindModel.FK_Orders_Customers" FromRole="Customers" ToRole="Orders"/>
      </EntityType>
      <EntityType Name="Order">
        <Key>
          <PropertyRef Name="OrderID"/>
        </Key>
        <Property Name="OrderID" Type="Edm.Int64" Nullable="false"/>
        <Property Name="OrderGuid" Type="Edm.Guid"/>
        <Property Name="OrderDate" Type="Edm.DateTime"/>
        <NavigationProperty Name="Customer" Relationship="NorthwindModel.FK_Orders_Customers" FromRole="Orders" ToRole="Customers"/>
      </EntityType>
      <Association Name="FK_Orders_Customers">
        <End Role="Customers" Type="NorthwindModel.Customer" Multiplicity="0..1"/>
        <End Role="Orders" Type="NorthwindModel.Order" Multiplicity="*"/>
      </Association>
      <EntityContainer Name="NorthwindEntities" m:IsDefaultEntityContainer="true">
        <EntitySet Name="Customers" EntityType="NorthwindModel.Customer"/>
        <EntitySet Name="Orders" EntityType="NorthwindModel.Order"/>
        <AssociationSet Name="FK_Orders_Customers" Association="NorthwindModel.FK_Orders_Customers">
          <End Role="Customers" EntitySet="Customers"/>
          <End Role="Orders" EntitySet="Orders"/>
        </AssociationSet>
        <FunctionImport Name="GetOrdersByDate" ReturnType="Collection(NorthwindModel.Order)" EntitySet="Orders" m:HttpMethod="GET">
          <Parameter Name="from" Type="Edm.DateTime" Mode="In"/>
          <Parameter Name="limit" Type="Edm.Int32" Mode="In"/>
        </FunctionImport>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""


def v4_document(entity_types: str, entity_sets: str, namespace: str = "Demo") -> str:
    """Minimal v4 document around the given EntityType and EntitySet markup."""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx" Version="4.0">
  <edmx:DataServices>
    <Schema xmlns="http://docs.oasis-open.org/odata/ns/edm" Namespace="{namespace}">
      {entity_types}
      <EntityContainer Name="Container">
        {entity_sets}
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""
